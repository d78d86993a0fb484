from .profile import CameraProfile, create_srgb_matrix

__all__ = ["CameraProfile", "create_srgb_matrix"]
