from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..core.config import settings
from ..utils.timezone import utc_now


class ViolationType(str, Enum):
    FACE_NOT_DETECTED = "face_not_detected"
    MULTIPLE_FACES = "multiple_faces"
    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    COPY_PASTE = "copy_paste"
    RIGHT_CLICK = "right_click"
    SUSPICIOUS_MOVEMENT = "suspicious_movement"
    AUDIO_DETECTED = "audio_detected"
    SCREEN_SHARE_STOPPED = "screen_share_stopped"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ViolationEvent(BaseModel):
    """A single detected integrity breach; immutable once recorded"""
    type: ViolationType
    severity: Severity = Severity.MEDIUM
    description: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        frozen = True


class ProctoringConfig(BaseModel):
    face_detection: bool = True
    screen_recording: bool = False
    browser_lockdown: bool = True
    prevent_copy_paste: bool = True
    prevent_right_click: bool = True
    prevent_tab_switch: bool = True
    allowed_tab_switches: int = 2
    webcam_required: bool = True
    microphone_monitoring: bool = False
    environment_scan: bool = True
    id_verification: bool = False
    suspicious_activity_threshold: int = Field(default=70, ge=0, le=100)

    class Config:
        frozen = True

    @classmethod
    def from_quiz_settings(cls, raw: Optional[Dict[str, Any]]) -> "ProctoringConfig":
        """Map a quiz's stored proctoring settings; missing settings fall back to MODERATE"""
        if not raw:
            return MODERATE_PROCTORING_CONFIG
        base = MODERATE_PROCTORING_CONFIG
        return cls(
            face_detection=raw.get("faceDetection", base.face_detection),
            screen_recording=raw.get("screenRecording", base.screen_recording),
            browser_lockdown=raw.get("browserLockdown", base.browser_lockdown),
            prevent_copy_paste=raw.get("preventCopyPaste", base.prevent_copy_paste),
            prevent_right_click=raw.get("preventRightClick", base.prevent_right_click),
            prevent_tab_switch=raw.get("tabSwitchingDetection", base.prevent_tab_switch),
            allowed_tab_switches=raw.get("allowedTabSwitches", base.allowed_tab_switches),
            webcam_required=raw.get("webcamRequired", base.webcam_required),
            microphone_monitoring=raw.get("audioMonitoring", base.microphone_monitoring),
            environment_scan=raw.get("roomScan", base.environment_scan),
            id_verification=raw.get("idVerification", base.id_verification),
            suspicious_activity_threshold=raw.get(
                "suspiciousBehaviorThreshold", base.suspicious_activity_threshold
            ),
        )


STRICT_PROCTORING_CONFIG = ProctoringConfig(
    allowed_tab_switches=0,
    microphone_monitoring=True,
    suspicious_activity_threshold=50,
)

MODERATE_PROCTORING_CONFIG = ProctoringConfig()

LENIENT_PROCTORING_CONFIG = ProctoringConfig(
    browser_lockdown=False,
    prevent_copy_paste=False,
    prevent_right_click=False,
    allowed_tab_switches=5,
    environment_scan=False,
    suspicious_activity_threshold=80,
)

BASIC_PROCTORING_CONFIG = ProctoringConfig(
    face_detection=False,
    browser_lockdown=False,
    prevent_copy_paste=False,
    prevent_right_click=False,
    prevent_tab_switch=False,
    allowed_tab_switches=10,
    webcam_required=False,
    environment_scan=False,
    suspicious_activity_threshold=90,
)


class RiskPolicy(BaseModel):
    """Severity weights, flag threshold and jitter window used to score violations"""
    weights: Dict[Severity, int] = Field(default_factory=lambda: {
        Severity.LOW: settings.risk_weight_low,
        Severity.MEDIUM: settings.risk_weight_medium,
        Severity.HIGH: settings.risk_weight_high,
    })
    threshold: int = Field(default_factory=lambda: settings.suspicious_activity_threshold, ge=0, le=100)
    dedup_window_seconds: float = Field(default_factory=lambda: settings.violation_dedup_window_seconds, ge=0)

    class Config:
        frozen = True

    @classmethod
    def for_config(cls, config: Optional[ProctoringConfig]) -> "RiskPolicy":
        if config is None:
            return cls()
        return cls(threshold=config.suspicious_activity_threshold)

    def weight_of(self, severity: Severity) -> int:
        return self.weights.get(severity, 0)

    def apply(self, score: int, severity: Severity) -> int:
        """Next risk score after one accepted violation; clamped and never lower"""
        return max(score, min(100, max(0, score + self.weight_of(severity))))


def risk_level(score: int) -> str:
    if score >= 70:
        return "high"
    if score >= 40:
        return "medium"
    return "low"
