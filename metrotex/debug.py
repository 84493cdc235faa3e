"""
Debug utility module for the MetroTex backend.

Loads and manages debug configurations from debug.json file.
"""

import json
import os
from typing import Any, Dict, Optional

DEFAULT_CONFIG: Dict[str, Any] = {
    "backend": {
        "horde_requests": False,
        "horde_responses": False,
        "polling": False,
        "llm_requests": False,
        "llm_responses": False,
        "database_operations": False,
    },
    "enabled": True,
}


class DebugLogger:
    def __init__(self, path: Optional[str] = None):
        self.path = path or os.getenv(
            "METROTEX_DEBUG_FILE",
            os.path.join(os.path.dirname(__file__), "..", "debug.json"),
        )
        self.config: Dict[str, Any] = {}
        self.load_config()

    def load_config(self):
        """Load debug configuration from debug.json file."""
        try:
            with open(self.path, 'r') as f:
                self.config = json.load(f)
        except (OSError, ValueError) as e:
            print(f"Warning: Failed to load debug.json: {e}")
            self.config = json.loads(json.dumps(DEFAULT_CONFIG))

    def is_enabled(self, category: str) -> bool:
        """Check if a specific debug category is enabled."""
        if not self.config.get("enabled", True):
            return False

        backend_config = self.config.get("backend", {})
        return backend_config.get(category, False)

    def log(self, category: str, message: str, *args):
        """Log a message if the category is enabled."""
        if self.is_enabled(category):
            print(f"[DEBUG {category.upper()}] {message}", *args)

    def debug_horde_requests(self, message: str):
        self.log("horde_requests", message)

    def debug_horde_responses(self, message: str):
        self.log("horde_responses", message)

    def debug_polling(self, message: str):
        self.log("polling", message)

    def debug_llm_requests(self, message: str):
        """Log LLM request debugging."""
        self.log("llm_requests", message)

    def debug_llm_responses(self, message: str):
        """Log LLM response debugging."""
        self.log("llm_responses", message)

    def debug_db(self, message: str):
        """Log database operation debugging."""
        self.log("database_operations", message)


# Global debug logger instance
_debug_logger = None

def get_debug_logger() -> DebugLogger:
    """Get the global debug logger instance."""
    global _debug_logger
    if _debug_logger is None:
        _debug_logger = DebugLogger()
    return _debug_logger
