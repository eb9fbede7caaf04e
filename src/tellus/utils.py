import logging


def setup_logging(level):
    """
    Configure logging with the specified level.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(filename)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # paho logs every packet at DEBUG
    logging.getLogger('paho.mqtt').setLevel(max(level, logging.INFO))


def format_snapshot(snapshot) -> str:
    """One-line summary of a SessionSnapshot for console output."""
    parts = [
        f"state={snapshot.connection_state.value}",
        f"device={'online' if snapshot.is_online else 'offline'}",
    ]
    if snapshot.current_spectrum is not None:
        values = snapshot.current_spectrum.values
        parts.append(f"spectrum@{snapshot.current_spectrum.timestamp} peak={max(values):.1f}")
    if snapshot.current_carbon is not None:
        parts.append(f"carbon={snapshot.current_carbon:.2f}%")
    if snapshot.logs:
        parts.append(f"log[{len(snapshot.logs)}]={snapshot.logs[-1].message!r}")
    if snapshot.last_error:
        parts.append(f"error={snapshot.last_error}")
    return " ".join(parts)
