from typing import Any, Dict, List


class RecordingNotifier:
    """Drop-in for `UploadNotifier`; keeps every notification instead of mailing it."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def send_upload_completed(self, **kwargs: Any) -> None:
        self.sent.append(kwargs)
