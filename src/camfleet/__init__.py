"""camfleet: supervisor for a fleet of per-camera detection workers.

One external worker process per camera reads the camera's RTSP stream and
serves an annotated MJPEG stream on its own port. camfleet persists the
camera list, detection settings and model catalog, and starts, stops and
restarts workers to match them.
"""

__version__ = "1.0.0"
