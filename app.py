import os
import threading
from flask import Flask, request, jsonify, send_file, render_template_string
from flask_cors import CORS

from ytmp3.service import build_service

app = Flask(__name__)
CORS(app)

# Built on first request: the yt-dlp worker processes re-import this module
# and must not create directories or backends of their own.
service = None
_service_lock = threading.Lock()


def get_service():
    global service
    with _service_lock:
        if service is None:
            service = build_service()
    return service


@app.route("/")
def home():
    return render_template_string(HOME_HTML)

@app.route("/health")
def health():
    return jsonify({"ok": True, "status": "online"})

@app.route("/convert", methods=["POST"])
def convert():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = request.form
    body, status = get_service().convert(data.get("url"))
    return jsonify(body), status

@app.route("/download/<filename>", methods=["GET"])
def download(filename):
    path = get_service().store.resolve(filename)
    if path is None:
        print(f"File not found: {filename}", flush=True)
        return jsonify({"error": "File not found"}), 404
    return send_file(path, mimetype="audio/mpeg", as_attachment=True, download_name=filename)


HOME_HTML = r"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>YouTube to MP3</title>
  <style>
    body { font-family: system-ui, sans-serif; background: #0b0b0b; color: #00ff41; max-width: 560px; margin: 60px auto; }
    input { width: 100%; padding: 10px; background: #111; color: inherit; border: 1px solid #00ff41; }
    button { margin-top: 12px; padding: 10px 18px; background: #00ff41; border: 0; cursor: pointer; }
    #result { margin-top: 20px; }
  </style>
</head>
<body>
  <h1>YouTube &rarr; MP3</h1>
  <input id="url" placeholder="https://www.youtube.com/watch?v=...">
  <button id="go">Convert</button>
  <div id="result"></div>
  <script>
    const result = document.getElementById('result');
    document.getElementById('go').addEventListener('click', async () => {
      const url = document.getElementById('url').value.trim();
      result.textContent = 'Converting...';
      try {
        const resp = await fetch('/convert', {
          method: 'POST',
          headers: { 'Content-Type': 'application/json' },
          body: JSON.stringify({ url })
        });
        const data = await resp.json();
        if (data.success) {
          result.innerHTML = `<a href="${data.downloadUrl}">Download MP3</a> (~${data.fileSize} MB)`;
        } else {
          result.textContent = data.error || 'Conversion failed';
        }
      } catch (err) {
        result.textContent = 'Conversion failed. Please try again.';
      }
    });
  </script>
</body>
</html>
"""

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)
