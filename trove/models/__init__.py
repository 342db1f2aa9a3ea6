"""Models package — import all models so metadata.create_all can discover them."""

from trove.models.user import User
from trove.models.file import File
from trove.models.folder import Folder
from trove.models.upload_session import UploadSession

__all__ = ["User", "File", "Folder", "UploadSession"]
