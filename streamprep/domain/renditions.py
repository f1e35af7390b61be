"""
Rendition models shared by the encoder, the packager and the orchestrator.
"""
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RenditionSpec:
    """
    One entry of the fixed rendition ladder.

    Attributes:
        resolution: The label used in file names and logs (e.g. "720p").
        width: Output width in pixels.
        height: Output height in pixels.
        bitrate: Target video bitrate in ffmpeg notation (e.g. "1500k").
        bandwidth: Nominal bandwidth (bits/s) advertised in the master manifest.
    """

    resolution: str
    width: int
    height: int
    bitrate: str
    bandwidth: int

    @property
    def bitrate_bps(self) -> int:
        """The target bitrate converted to bits per second."""
        value = self.bitrate.strip().lower()
        if value.endswith("k"):
            return int(float(value[:-1]) * 1000)
        if value.endswith("m"):
            return int(float(value[:-1]) * 1_000_000)
        return int(float(value))

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class RenditionResult:
    """
    What a successful rendition encode produced.

    A list of these is the only input of the segment packager and of the
    persisted rendition records; a resolution missing from the list is simply
    left out of the master manifest.
    """

    resolution: str
    file_path: Path
    file_size: int
    bitrate: int

    def to_dict(self) -> dict:
        return {
            "resolution": self.resolution,
            "file_path": str(self.file_path),
            "file_size": self.file_size,
            "bitrate": self.bitrate,
        }
