from .debug_image import write_quad_debug_tiff
from .dng_writer import DngWriteError, build_raw_image, write_dng
from .exif_writer import ExifWriteError, add_exif_metadata, make_thumbnail
from .image_output import preview_path, write_jpeg
from .manifests import ProcessingRecord, write_processing_record

__all__ = [
    "write_quad_debug_tiff",
    "DngWriteError",
    "build_raw_image",
    "write_dng",
    "ExifWriteError",
    "add_exif_metadata",
    "make_thumbnail",
    "preview_path",
    "write_jpeg",
    "ProcessingRecord",
    "write_processing_record",
]
