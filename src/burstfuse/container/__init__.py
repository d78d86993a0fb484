from .raw_container import ContainerError, FrameEntry, RawContainer, RawContainerWriter

__all__ = ["ContainerError", "FrameEntry", "RawContainer", "RawContainerWriter"]
