"""
Configuration manager for attempt session and backend settings.
"""
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import BackendSettings, SessionSettings


class ConfigManager:
    """Manages session settings and backend connection settings."""

    # Default configuration values
    DEFAULT_TICK_INTERVAL = 1.0
    DEFAULT_PROGRESS_SYNC_INTERVAL = 10
    DEFAULT_BASE_XP = 100
    DEFAULT_PASS_THRESHOLD = 70.0
    DEFAULT_LEADERBOARD_SIZE = 10

    # Validation limits
    MIN_TICK_INTERVAL = 0.1
    MAX_TICK_INTERVAL = 10.0
    MIN_PROGRESS_SYNC_INTERVAL = 1
    MAX_PROGRESS_SYNC_INTERVAL = 300  # 5 minutes
    MIN_BASE_XP = 1
    MAX_BASE_XP = 10000
    MIN_LEADERBOARD_SIZE = 1
    MAX_LEADERBOARD_SIZE = 100
    MIN_OUTBOX_DELAY = 0.1
    MAX_OUTBOX_DELAY = 3600.0  # 1 hour

    URL_ENV = "SUPABASE_URL"
    KEY_ENV = "SUPABASE_KEY"

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._session_settings = SessionSettings()
        self._backend_settings = BackendSettings()

    def get_session_settings(self) -> SessionSettings:
        """
        Get current session settings.

        Returns:
            A copy of the SessionSettings in effect
        """
        return replace(self._session_settings)

    def get_backend_settings(self) -> BackendSettings:
        """
        Get backend settings, with credentials from the environment taking precedence.

        Returns:
            A copy of the BackendSettings in effect
        """
        return replace(
            self._backend_settings,
            url=os.getenv(self.URL_ENV) or self._backend_settings.url,
            key=os.getenv(self.KEY_ENV) or self._backend_settings.key,
        )

    def _check_number(self, label: str, value: Any, minimum: float, maximum: float,
                      integer: bool = False) -> Optional[Dict[str, Any]]:
        """Return a failure result if `value` is not a number within range, else None."""
        expected = (int,) if integer else (int, float)
        if isinstance(value, bool) or not isinstance(value, expected):
            error_msg = (f"{label} must be {'an integer' if integer else 'a number'}, "
                         f"got {type(value).__name__}")
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            }

        if value < minimum:
            error_msg = f"{label} must be at least {minimum}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {label} too small: Minimum is {minimum}"
            }

        if value > maximum:
            error_msg = f"{label} cannot exceed {maximum}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {label} too large: Maximum is {maximum}"
            }

        return None

    def _applied(self, message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {
            'success': True,
            'message': message,
            'user_message': f"✅ {message}"
        }

    def set_tick_interval(self, seconds: float) -> Dict[str, Any]:
        """
        Set the interval of the elapsed-time ticker.

        Args:
            seconds: Seconds between ticks

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_number("Tick interval", seconds,
                                     self.MIN_TICK_INTERVAL, self.MAX_TICK_INTERVAL)
        if failure:
            return failure
        self._session_settings.tick_interval = float(seconds)
        return self._applied(f"Tick interval set to {float(seconds)} seconds")

    def set_progress_sync_interval(self, seconds: int) -> Dict[str, Any]:
        """
        Set how many elapsed seconds pass between progress writes.

        Args:
            seconds: Elapsed seconds between two progress writes

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_number("Progress sync interval", seconds,
                                     self.MIN_PROGRESS_SYNC_INTERVAL,
                                     self.MAX_PROGRESS_SYNC_INTERVAL, integer=True)
        if failure:
            return failure
        self._session_settings.progress_sync_interval = seconds
        return self._applied(f"Progress sync interval set to {seconds} seconds")

    def set_base_xp(self, base_xp: int) -> Dict[str, Any]:
        failure = self._check_number("Base XP", base_xp, self.MIN_BASE_XP, self.MAX_BASE_XP,
                                     integer=True)
        if failure:
            return failure
        self._session_settings.base_xp = base_xp
        return self._applied(f"Base XP set to {base_xp}")

    def set_pass_threshold(self, threshold: float) -> Dict[str, Any]:
        """
        Set the minimum score percentage for a passed attempt.

        Args:
            threshold: Score percentage between 0 and 100

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_number("Pass threshold", threshold, 0, 100)
        if failure:
            return failure
        self._session_settings.pass_threshold = float(threshold)
        return self._applied(f"Pass threshold set to {float(threshold)}%")

    def set_leaderboard_size(self, size: int) -> Dict[str, Any]:
        failure = self._check_number("Leaderboard size", size, self.MIN_LEADERBOARD_SIZE,
                                     self.MAX_LEADERBOARD_SIZE, integer=True)
        if failure:
            return failure
        self._session_settings.leaderboard_size = size
        return self._applied(f"Leaderboard size set to {size}")

    def set_outbox_backoff(self, base_delay: float, max_delay: float) -> Dict[str, Any]:
        """
        Set the retry backoff of pending writes.

        Args:
            base_delay: Delay in seconds after the first failure
            max_delay: Upper bound of the delay

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        for label, value in (("Outbox base delay", base_delay), ("Outbox max delay", max_delay)):
            failure = self._check_number(label, value, self.MIN_OUTBOX_DELAY, self.MAX_OUTBOX_DELAY)
            if failure:
                return failure

        if max_delay < base_delay:
            error_msg = f"Outbox max delay ({max_delay}) is smaller than base delay ({base_delay})"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Maximum retry delay must not be smaller than the base delay"
            }

        self._session_settings.outbox_base_delay = float(base_delay)
        self._session_settings.outbox_max_delay = float(max_delay)
        return self._applied(f"Outbox backoff set to {float(base_delay)}s .. {float(max_delay)}s")

    def set_outbox_path(self, path: Optional[str]) -> Dict[str, Any]:
        """
        Set the journal file of pending writes.

        Args:
            path: Journal file path, or None to keep pending writes in memory only

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if path is None:
            self._session_settings.outbox_path = None
            return self._applied("Pending writes will be kept in memory only")

        if not isinstance(path, str) or not path.strip():
            error_msg = f"Outbox path must be a non-empty string, got {path!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Outbox path cannot be empty"
            }

        try:
            normalized_path = str(Path(path).expanduser().resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid outbox path format: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid path format: {path}"
            }

        self._session_settings.outbox_path = normalized_path
        return self._applied(f"Outbox journal set to {normalized_path}")

    def set_backend(self, url: Optional[str] = None, key: Optional[str] = None,
                    **names: str) -> Dict[str, Any]:
        """
        Set backend credentials and table/procedure names.

        Args:
            url: Project URL
            key: API key
            **names: Any of questions_table, attempts_table, answers_table,
                finish_quiz_rpc, reset_attempt_rpc

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        known = {"questions_table", "attempts_table", "answers_table",
                 "finish_quiz_rpc", "reset_attempt_rpc"}
        unknown = sorted(set(names) - known)
        if unknown:
            error_msg = f"Unknown backend settings: {', '.join(unknown)}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Unknown backend settings: {', '.join(unknown)}"
            }

        for name, value in names.items():
            if not isinstance(value, str) or not value.strip():
                error_msg = f"Backend setting {name} must be a non-empty string"
                self.logger.error(error_msg)
                return {
                    'success': False,
                    'error': error_msg,
                    'user_message': f"❌ Backend setting {name} cannot be empty"
                }

        self._backend_settings = replace(
            self._backend_settings,
            url=url if url is not None else self._backend_settings.url,
            key=key if key is not None else self._backend_settings.key,
            **names,
        )
        return self._applied("Backend settings updated")

    def load_from_dict(self, config: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Apply the `session` and `backend` sections of an application config.

        Invalid values are logged and skipped; the defaults stay in effect.

        Returns:
            The failure results of the settings that were rejected
        """
        session_config = config.get('session', {})
        backend_config = dict(config.get('backend', {}))
        results = []

        if 'tick_interval' in session_config:
            results.append(self.set_tick_interval(session_config['tick_interval']))
        if 'progress_sync_interval' in session_config:
            results.append(self.set_progress_sync_interval(session_config['progress_sync_interval']))
        if 'base_xp' in session_config:
            results.append(self.set_base_xp(session_config['base_xp']))
        if 'pass_threshold' in session_config:
            results.append(self.set_pass_threshold(session_config['pass_threshold']))
        if 'leaderboard_size' in session_config:
            results.append(self.set_leaderboard_size(session_config['leaderboard_size']))
        if 'outbox_path' in session_config:
            results.append(self.set_outbox_path(session_config['outbox_path']))
        if 'outbox_base_delay' in session_config or 'outbox_max_delay' in session_config:
            results.append(self.set_outbox_backoff(
                session_config.get('outbox_base_delay', self._session_settings.outbox_base_delay),
                session_config.get('outbox_max_delay', self._session_settings.outbox_max_delay),
            ))
        if backend_config:
            url = backend_config.pop('url', None)
            key = backend_config.pop('key', None)
            results.append(self.set_backend(url=url, key=key, **backend_config))

        failures = [result for result in results if not result['success']]
        for failure in failures:
            self.logger.warning(f"Ignoring invalid configuration value: {failure['error']}")
        return failures

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._session_settings = SessionSettings()
        self._backend_settings = BackendSettings()
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        settings = self._session_settings

        if not self.MIN_TICK_INTERVAL <= settings.tick_interval <= self.MAX_TICK_INTERVAL:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid tick interval: {settings.tick_interval}")

        if not (self.MIN_PROGRESS_SYNC_INTERVAL <= settings.progress_sync_interval
                <= self.MAX_PROGRESS_SYNC_INTERVAL):
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid progress sync interval: {settings.progress_sync_interval}"
            )

        if not 0 <= settings.pass_threshold <= 100:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid pass threshold: {settings.pass_threshold}")

        if settings.outbox_max_delay < settings.outbox_base_delay:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid outbox backoff: {settings.outbox_base_delay}s .. {settings.outbox_max_delay}s"
            )

        backend = self.get_backend_settings()
        if not backend.url or not backend.key:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Missing backend credentials: set {self.URL_ENV} and {self.KEY_ENV}"
            )

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        settings = self._session_settings
        backend = self.get_backend_settings()
        outbox_str = settings.outbox_path or "in memory"

        return (
            f"Session Settings:\n"
            f"• Tick interval: {settings.tick_interval} seconds\n"
            f"• Progress sync: every {settings.progress_sync_interval} seconds\n"
            f"• Base XP: {settings.base_xp}\n"
            f"• Pass threshold: {settings.pass_threshold}%\n"
            f"• Outbox: {outbox_str} (retry {settings.outbox_base_delay}s .. {settings.outbox_max_delay}s)\n"
            f"• Backend: {backend.url or 'not configured'}"
        )
