#!/usr/bin/env python3
"""
Pre-flight check before starting the app
Run this to verify the conversion backends are usable
"""

import os
import sys
import shutil
import socket

def check_python_version():
    """Check Python version"""
    version = sys.version_info
    if version >= (3, 10):
        print(f"✓ Python {version.major}.{version.minor}.{version.micro}")
        return True
    else:
        print(f"✗ Python {version.major}.{version.minor}.{version.micro} - Need 3.10+")
        return False

def check_dependencies():
    """Check if required packages are installed"""
    packages = {
        'flask': 'Flask',
        'flask_cors': 'flask-cors',
        'yt_dlp': 'yt-dlp',
        'requests': 'requests',
    }

    all_installed = True
    for module, package in packages.items():
        try:
            __import__(module)
            print(f"✓ {package}")
        except ImportError:
            print(f"✗ {package} - Install with: pip install {package}")
            all_installed = False

    return all_installed

def check_ffmpeg():
    from ytmp3 import config
    path = shutil.which(config.FFMPEG_BIN)
    if path:
        print(f"✓ ffmpeg at {path}")
        return True
    print(f"✗ {config.FFMPEG_BIN} not found - MP3 transcoding by yt-dlp will fail")
    return False

def check_backends(backends=None):
    """Probe every configured backend; at least one has to be usable"""
    if backends is None:
        from ytmp3.backends import build_backends
        backends = build_backends()
    usable = 0
    for backend in backends:
        try:
            ok = backend.probe()
        except Exception as e:
            print(f"✗ {backend.id} probe raised: {e}")
            continue
        if ok:
            usable += 1
            print(f"✓ {backend.id} ({len(backend.configs())} configuration(s), {backend.timeout:g}s timeout)")
        else:
            print(f"⚠️  {backend.id} unavailable - will be skipped")
    if not usable:
        print("✗ No backend available")
    return usable > 0

def check_port():
    """Check if the configured port is available"""
    port = int(os.environ.get("PORT", 5000))
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    result = sock.connect_ex(('127.0.0.1', port))
    sock.close()

    if result == 0:
        print(f"⚠️  Port {port} is already in use - you may need to kill existing process")
        print(f"   Run: lsof -ti:{port} | xargs kill -9")
        return False
    else:
        print(f"✓ Port {port} available")
        return True

def main():
    print("=" * 60)
    print("YouTube to MP3 - Pre-flight Check")
    print("=" * 60)
    print()

    checks = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("FFmpeg", check_ffmpeg),
        ("Backends", check_backends),
        ("Port Availability", check_port),
    ]

    results = []
    for name, check_func in checks:
        print(f"\n{name}:")
        print("-" * 40)
        results.append(check_func())

    print()
    print("=" * 60)

    if all(results):
        print("✓ All checks passed! You can start the app:")
        print()
        print("  python app.py")
        print()
        print(f"Then open: http://localhost:{os.environ.get('PORT', 5000)}")
    else:
        print("✗ Some checks failed. Please fix the issues above.")
        sys.exit(1)

if __name__ == "__main__":
    main()
