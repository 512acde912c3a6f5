# crop_server.py
"""
Video crop server

Upload a video with a crop request, get back a link to the cropped file.

Two cropping modes (multipart form fields next to the `video` file):
 - edge:   top, bottom, left, right             -> removes pixels from each edge
 - region: cropX, cropY, cropWidth, cropHeight  -> crops to a specific rectangle

Usage example:
  curl -F video=@clip.mp4 -F top=100 -F bottom=100 http://localhost:4000/api/crop-video

Response:
{
  "message": "Video processed successfully",
  "downloadUrl": "http://localhost:4000/output/cropped-1718000000000.mp4"
}

Requirements: ffmpeg and ffprobe on PATH (or FFMPEG_BIN / FFPROBE_BIN)
"""

import os
import re
import json
import shlex
import shutil
import subprocess
import time
import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from crop_resolver import CropError, CropRectangle, SourceDimensions, resolve_fields

# load .env if present
load_dotenv()

# logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("crop_server")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "4000"))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "output"))
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")
FFPROBE_TIMEOUT = int(os.getenv("FFPROBE_TIMEOUT", "30"))
FFMPEG_TIMEOUT = int(os.getenv("FFMPEG_TIMEOUT", "600"))

UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

logger.info("FFmpeg path: %s", shutil.which(FFMPEG_BIN) or FFMPEG_BIN)
logger.info("FFprobe path: %s", shutil.which(FFPROBE_BIN) or FFPROBE_BIN)

app = FastAPI(title="Video Crop Server")
app.mount("/output", StaticFiles(directory=str(OUTPUT_DIR)), name="output")

# ----------------- Response models -----------------
class CropResponse(BaseModel):
    message: str
    downloadUrl: str

# ----------------- Subprocess runner -----------------

def run_cmd(cmd: List[str], timeout: int = None) -> subprocess.CompletedProcess:
    logger.debug("Run command: %s", " ".join(shlex.quote(c) for c in cmd))
    cp = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    return cp

# ----------------- Upload storage -----------------
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

def upload_filename(original: Optional[str]) -> str:
    name = _UNSAFE_CHARS.sub("_", Path(original or "").name).strip("._") or "video"
    return f"{int(time.time() * 1000)}-{name}"


def save_upload(upload: UploadFile, dest: Path) -> int:
    upload.file.seek(0)
    with dest.open("wb") as f:
        shutil.copyfileobj(upload.file, f)
    size = dest.stat().st_size
    logger.info("saved upload %s -> %s (%d bytes)", upload.filename, dest, size)
    return size

# ----------------- ffprobe -----------------

class NoVideoStreamError(RuntimeError):
    pass


def probe_dimensions(input_path: str) -> SourceDimensions:
    """
    Read width/height of the first stream that has both.
    Raises RuntimeError if ffprobe fails, NoVideoStreamError if nothing has a size.
    """
    cmd = [
        FFPROBE_BIN, "-v", "error",
        "-print_format", "json",
        "-show_streams",
        input_path,
    ]
    cp = run_cmd(cmd, timeout=FFPROBE_TIMEOUT)
    if cp.returncode != 0:
        logger.error("ffprobe failed: %s", cp.stderr or cp.stdout)
        raise RuntimeError("ffprobe failed: " + (cp.stderr or cp.stdout or ""))
    try:
        metadata = json.loads(cp.stdout or "{}")
    except ValueError as e:
        raise RuntimeError(f"ffprobe returned invalid json: {e}") from e
    logger.debug("Video metadata: %s", metadata)

    for stream in metadata.get("streams", []):
        if stream.get("width") and stream.get("height"):
            return SourceDimensions(width=int(stream["width"]), height=int(stream["height"]))
    raise NoVideoStreamError(f"no video stream in {input_path}")

# ----------------- ffmpeg crop -----------------

def crop_video(input_path: str, out_path: str, rect: CropRectangle):
    cmd = [
        FFMPEG_BIN, "-y", "-i", input_path,
        "-vf", rect.ffmpeg_filter(),
        "-c:a", "copy",
        out_path
    ]
    try:
        cp = run_cmd(cmd, timeout=FFMPEG_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        remove_file_later(out_path)
        raise RuntimeError(f"ffmpeg crop timed out after {FFMPEG_TIMEOUT}s") from e
    if cp.returncode != 0:
        logger.error("crop ffmpeg failed: %s", cp.stderr or cp.stdout)
        remove_file_later(out_path)
        raise RuntimeError("crop ffmpeg failed: " + (cp.stderr or cp.stdout or ""))
    logger.info("Video processed: %s (%s)", out_path, rect.ffmpeg_filter())

# ----------------- cleanup -----------------
def remove_file_later(path: str):
    try:
        if os.path.exists(path):
            os.remove(path)
            logger.info("removed temp file %s", path)
    except OSError as e:
        logger.warning("failed to remove temp file %s: %s", path, e)

# ----------------- API endpoints -----------------
@app.post("/api/crop-video", response_model=CropResponse)
async def crop_video_endpoint(
    request: Request,
    video: Optional[UploadFile] = File(None),
    top: Optional[str] = Form(None),
    bottom: Optional[str] = Form(None),
    left: Optional[str] = Form(None),
    right: Optional[str] = Form(None),
    cropX: Optional[str] = Form(None),
    cropY: Optional[str] = Form(None),
    cropWidth: Optional[str] = Form(None),
    cropHeight: Optional[str] = Form(None),
):
    if video is None or not video.filename:
        raise HTTPException(status_code=400, detail="No video file uploaded")

    fields: Dict[str, Optional[str]] = {
        "top": top, "bottom": bottom, "left": left, "right": right,
        "cropX": cropX, "cropY": cropY, "cropWidth": cropWidth, "cropHeight": cropHeight,
    }
    input_path = UPLOAD_DIR / upload_filename(video.filename)

    loop = asyncio.get_event_loop()
    try:
        try:
            await loop.run_in_executor(None, save_upload, video, input_path)
        except OSError as e:
            logger.exception("save upload failed")
            raise HTTPException(status_code=500, detail="Failed to save upload") from e

        # 1) probe
        try:
            source = await loop.run_in_executor(None, probe_dimensions, str(input_path))
        except NoVideoStreamError:
            raise HTTPException(status_code=500, detail="No video stream found")
        except (RuntimeError, OSError, subprocess.TimeoutExpired) as e:
            logger.error("probe failed for %s: %s", input_path, e)
            raise HTTPException(status_code=500, detail="Failed to read video metadata")

        # 2) resolve crop rectangle before any transcoding
        result = resolve_fields(source, fields)
        if isinstance(result, CropError):
            logger.info("crop rejected (%s): %s", result.kind.value, result.message)
            raise HTTPException(status_code=400, detail=result.message)

        # 3) crop
        out_name = f"cropped-{int(time.time() * 1000)}.mp4"
        out_path = OUTPUT_DIR / out_name
        try:
            await loop.run_in_executor(None, crop_video, str(input_path), str(out_path), result)
        except (RuntimeError, OSError) as e:
            logger.error("FFmpeg processing error: %s", e)
            raise HTTPException(status_code=500, detail="Failed to process video")

        download_url = f"{str(request.base_url).rstrip('/')}/output/{out_name}"
        return CropResponse(message="Video processed successfully", downloadUrl=download_url)
    except HTTPException:
        raise
    except Exception:
        logger.exception("crop request failed")
        raise HTTPException(status_code=500, detail="Something went wrong")
    finally:
        remove_file_later(str(input_path))

@app.get("/health")
async def health():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn

    logger.info("Server running on http://localhost:%d", PORT)
    uvicorn.run(app, host=HOST, port=PORT)
