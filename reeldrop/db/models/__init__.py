from reeldrop.db.models.upload_link import UploadLink
from reeldrop.db.models.file import File
from reeldrop.db.models.file_proxy import FileProxy

__all__ = ["UploadLink", "File", "FileProxy"]
