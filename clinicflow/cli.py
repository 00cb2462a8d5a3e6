import argparse
import json
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

from clinicflow.config import AppConfig
from clinicflow.domain.models import Appointment, AppointmentStatus, BusinessRuleContext
from clinicflow.rules.aggregates import (
    available_actions,
    needs_urgent_attention,
    suggest_next_action,
)
from clinicflow.rules.windows import RuleSet


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clinicflow-evaluate",
        description="Show which admission actions are available for an appointment.",
    )
    parser.add_argument("--scheduled-at", required=True, help="ISO 8601 appointment time")
    parser.add_argument(
        "--status",
        required=True,
        choices=[status.value for status in AppointmentStatus],
    )
    parser.add_argument("--updated-at", help="ISO 8601 time of the last edit")
    parser.add_argument("--now", help="ISO 8601 evaluation time (defaults to the clock)")
    parser.add_argument("--override", action="store_true", help="Bypass timing rules")
    return parser


def evaluate(args: argparse.Namespace, rules: RuleSet) -> dict[str, Any]:
    appointment = Appointment(
        scheduled_at=args.scheduled_at,
        status=args.status,
        updated_at=args.updated_at,
    )
    context = BusinessRuleContext(current_time=args.now, allow_override=args.override)
    suggestion = suggest_next_action(appointment, context=context, rules=rules)
    urgency = needs_urgent_attention(appointment, context.current_time, rules=rules)

    return {
        "actions": [
            entry.model_dump(mode="json")
            for entry in available_actions(appointment, context=context, rules=rules)
        ],
        "suggested_action": suggestion.value if suggestion else None,
        "urgency": urgency.model_dump(mode="json"),
    }


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    config = AppConfig()

    logger.remove()
    logger.add(sys.stderr, level=config.log_level.upper())

    args = build_parser().parse_args(argv)
    try:
        output = evaluate(args, RuleSet(config.rules))
    except ValidationError as exc:
        logger.error("Invalid appointment input: {}", exc)
        return 2

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
