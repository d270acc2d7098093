"""Email reminders for every approved appointment scheduled tomorrow.

Usage:
    python -m backend.send_reminders
"""
import logging
import sys

from backend.core import config
from backend.database import SessionLocal
from backend.services.email_transport import SmtpEmailTransport
from backend.services.registry import build_services
from backend.services.reminders import send_due_reminders


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    services = build_services(SessionLocal, SmtpEmailTransport.from_config())
    try:
        results = send_due_reminders(services.appointments, services.lifecycle, services.dispatcher)
    finally:
        services.shutdown()

    for result in results:
        line = f"{result.appointment_id}\t{result.status}"
        if result.error:
            line += f"\t{result.error}"
        print(line)

    if any(result.status == 'failed' for result in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
