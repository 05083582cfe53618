from .archiver import ArchiveFormat, archive, archive_name

__all__ = ["ArchiveFormat", "archive", "archive_name"]
