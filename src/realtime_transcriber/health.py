import logging
import wave
from dataclasses import dataclass
from pathlib import Path

from realtime_transcriber.config import TranscriberConfig

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str
    critical: bool = True


def run_startup_checks(
    config: TranscriberConfig, audio_path: str | Path | None = None
) -> list[HealthCheckResult]:
    results = [
        _check_credentials(config),
        _check_sample_rate(config),
        _check_conduit_capacity(config),
    ]
    if audio_path is not None:
        results.append(_check_audio_file(Path(audio_path)))

    passed = sum(1 for r in results if r.passed)
    logger.info("Startup checks: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.critical for r in results)


def _check_credentials(config: TranscriberConfig) -> HealthCheckResult:
    if config.token:
        if config.resolve_api_key():
            return HealthCheckResult("credentials", True, "temporary token (API key ignored)")
        return HealthCheckResult("credentials", True, "temporary token")
    if config.api_key:
        return HealthCheckResult("credentials", True, "API key")
    if config.api_key_file:
        if config.read_secret(config.api_key_file):
            return HealthCheckResult("credentials", True, f"API key from {config.api_key_file}")
        return HealthCheckResult("credentials", False, f"{config.api_key_file} missing or empty")
    return HealthCheckResult("credentials", False, "no API key or temporary token configured")


def _check_sample_rate(config: TranscriberConfig) -> HealthCheckResult:
    if config.sample_rate > 0:
        return HealthCheckResult("sample_rate", True, f"{config.sample_rate} Hz")
    return HealthCheckResult("sample_rate", False, f"invalid sample rate {config.sample_rate}")


def _check_conduit_capacity(config: TranscriberConfig) -> HealthCheckResult:
    if config.conduit_maxsize == 0:
        return HealthCheckResult("conduits", True, "unbounded", critical=False)
    if config.conduit_maxsize < 0:
        return HealthCheckResult("conduits", False, f"invalid size {config.conduit_maxsize}")
    return HealthCheckResult(
        "conduits",
        True,
        f"bounded at {config.conduit_maxsize} ({config.overflow_policy})",
        critical=False,
    )


def _check_audio_file(path: Path) -> HealthCheckResult:
    if not path.is_file():
        return HealthCheckResult("audio_file", False, f"{path} not found")
    try:
        with wave.open(str(path), "rb") as wav:
            rate = wav.getframerate()
            width = wav.getsampwidth()
            channels = wav.getnchannels()
    except (wave.Error, EOFError) as exc:
        return HealthCheckResult("audio_file", False, f"{path} is not a WAV file: {exc}")
    if width != 2 or channels != 1:
        return HealthCheckResult(
            "audio_file", False, f"{path} is {width * 8}-bit with {channels} channels, need 16-bit mono"
        )
    return HealthCheckResult("audio_file", True, f"{path.name} ({rate} Hz)")
