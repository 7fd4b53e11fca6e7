import logging
from typing import Optional

from StudyBackEnd.core.config import log_level, log_to_file
from StudyBackEnd.core.paths import log_dir

def setup_logger(
	name: str,
	log_file: str = "app.log",
	level: Optional[int] = None,
	console: bool = True,
) -> logging.Logger:
	"""Configure and return a module-level logger."""
	logger = logging.getLogger(name)
	logger.setLevel(level if level is not None else log_level())

	if not logger.handlers:
		formatter = logging.Formatter(
			"%(asctime)s - %(name)s - %(levelname)s - %(message)s"
		)
		if log_to_file():
			file_handler = logging.FileHandler(log_dir() / log_file, encoding="utf-8")
			file_handler.setFormatter(formatter)
			logger.addHandler(file_handler)

		if console:
			console_handler = logging.StreamHandler()
			console_handler.setFormatter(formatter)
			logger.addHandler(console_handler)

	return logger
