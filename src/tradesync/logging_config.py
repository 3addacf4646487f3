import logging
from datetime import datetime, timezone
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path | None = None,
    component: str = "tradesync",
) -> Path | None:
    """
    Configure logging:
      - Console (stderr)
      - Optional daily log file in <log_dir>/<component>/YYYY-MM-DD.log (UTC date)

    Returns:
      Path to the current daily log file, or None when logging to console only.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(LOG_FORMAT)
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    if log_dir is None:
        return None

    target_dir = Path(log_dir) / component
    target_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    log_path = target_dir / f"{date_str}.log"

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    root.addHandler(fh)
    return log_path
