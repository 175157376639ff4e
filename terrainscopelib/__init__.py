from ._version import __version__
from .models import (
    PCMBuffer,
    SpectrogramMatrix,
    TerrainMesh,
    PlaybackClock,
    ScanPhase,
    ScanState,
    CageGeometry,
    CageLabel,
    RenderState,
)
from .spectrogram import SpectrogramEngine, analyze
from .terrain import TerrainMeshBuilder, parse_color
from .cage import CageRenderer
from .scanner import PlaybackScanner
from .session import AnalyzerSession
from .audio import (
    AudioLoadError,
    FetchFailure,
    DecodeFailure,
    EmptyInput,
    load_audio,
    decode_audio,
)
from .config import (
    default_config,
    merge_configs,
    validate_config,
    validate_config_fields,
    load_preset,
    save_preset,
    ConfigError,
    ConfigFieldError,
    ParamSpec,
    VIEW_PARAMS,
)
from .events import EventBus

__all__ = [
    "__version__",
    "PCMBuffer",
    "SpectrogramMatrix",
    "TerrainMesh",
    "PlaybackClock",
    "ScanPhase",
    "ScanState",
    "CageGeometry",
    "CageLabel",
    "RenderState",
    "SpectrogramEngine",
    "analyze",
    "TerrainMeshBuilder",
    "parse_color",
    "CageRenderer",
    "PlaybackScanner",
    "AnalyzerSession",
    "AudioLoadError",
    "FetchFailure",
    "DecodeFailure",
    "EmptyInput",
    "load_audio",
    "decode_audio",
    "default_config",
    "merge_configs",
    "validate_config",
    "validate_config_fields",
    "load_preset",
    "save_preset",
    "ConfigError",
    "ConfigFieldError",
    "ParamSpec",
    "VIEW_PARAMS",
    "EventBus",
]
