"""GestureParticles - Hand-gesture controlled morphing point clouds."""

__version__ = "0.1.0"

from gesture_particles.patterns import Pattern, ParticleData, ForegroundSample, generate, entry_jitter
from gesture_particles.smoothing import GestureState, SmoothingConfig, SmoothingEngine
from gesture_particles.extractor import GestureExtractor, HandPresence, ScaleMapping, RotationMapping
from gesture_particles.tracker import (
    HandTracker,
    MediaPipeHandTracker,
    ReplayHandTracker,
    BackgroundHandTracker,
    LibraryLoadError,
    CameraConfig,
)
from gesture_particles.recorder import HandFrameRecorder, HandFramePlayer
from gesture_particles.render import PointRenderer, HeadlessRenderer, OpenCVPointRenderer, RenderFrame
from gesture_particles.drawing import sample_foreground, load_foreground
from gesture_particles.config import SessionConfig, load_config, save_config, parse_hex_color
from gesture_particles.profiler import FrameProfiler, StageTiming
from gesture_particles.session import ParticleSession
