from __future__ import annotations

import logging

from netemu.api import create_app
from netemu.settings import get_settings

logger = logging.getLogger(__name__)


def build_app():
	"""Build the Flask controller app with logging configured from settings."""
	settings = get_settings()
	logging.basicConfig(
		level=getattr(logging, settings.log_level, logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	logger.info(f"Starting netemu controller (kubeconfig={settings.kubeconfig or 'ambient'})")
	return create_app()


# Build app at module level (for gunicorn)
app = build_app()


if __name__ == "__main__":
	app.run(host="0.0.0.0", port=8080)
