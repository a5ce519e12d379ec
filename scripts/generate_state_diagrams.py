"""
Generate Mermaid diagrams from the order and remittance transition tables.

Usage:
    python scripts/generate_state_diagrams.py            # print to stdout
    python scripts/generate_state_diagrams.py --write    # refresh docs/STATE_DIAGRAMS.md
    python scripts/generate_state_diagrams.py --check    # fail if the doc is stale (CI)
"""
import argparse
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.state_machine.states import (
    OrderStatus,
    ORDER_TRANSITIONS,
    RemittanceStatus,
    REMITTANCE_TRANSITIONS,
    STATUS_BUCKETS,
)

DIAGRAMS_PATH = Path(__file__).resolve().parent.parent / "docs" / "STATE_DIAGRAMS.md"

ORDER_LABELS: dict[str, str] = {
    OrderStatus.PENDING.value: "Pending",
    OrderStatus.ASSIGNED.value: "Assigned to driver",
    OrderStatus.PICKED_UP.value: "Picked up",
    OrderStatus.IN_TRANSIT.value: "In transit",
    OrderStatus.OUT_FOR_DELIVERY.value: "Out for delivery",
    OrderStatus.NO_RESPONSE.value: "Customer not responding",
    OrderStatus.DELIVERED.value: "Delivered (stock deducted)",
    OrderStatus.RETURNED.value: "Returned",
    OrderStatus.CANCELLED.value: "Cancelled",
}

REMITTANCE_LABELS: dict[str, str] = {
    RemittanceStatus.PENDING.value: "Requested",
    RemittanceStatus.APPROVED.value: "Approved",
    RemittanceStatus.SENT.value: "Sent (final)",
}


def generate_mermaid_from_transitions(
    transitions: dict[Any, list[Any]],
    labels: dict[str, str],
    initial: Any,
) -> str:
    """
    Render a stateDiagram-v2 from a {status: [targets]} table.

    Statuses without outgoing edges are drawn as terminal.
    """
    lines: list[str] = ["stateDiagram-v2"]

    for status in transitions:
        lines.append(f"    {status.value} : {labels.get(status.value, status.value)}")

    lines.append("")
    lines.append(f"    [*] --> {initial.value}")

    for source, targets in transitions.items():
        for target in targets:
            lines.append(f"    {source.value} --> {target.value}")

    for status, targets in transitions.items():
        if not targets:
            lines.append(f"    {status.value} --> [*]")

    return "\n".join(lines)


def generate_bucket_table() -> str:
    """Markdown table of the dashboard bucket for each order status"""
    rows = ["| Status | Bucket |", "| --- | --- |"]
    for status in OrderStatus:
        rows.append(f"| `{status.value}` | {STATUS_BUCKETS[status].value} |")
    return "\n".join(rows)


def generate_all_diagrams() -> dict[str, str]:
    return {
        "Order status (OrderStatus)": generate_mermaid_from_transitions(
            ORDER_TRANSITIONS, ORDER_LABELS, OrderStatus.PENDING,
        ),
        "Remittance status (RemittanceStatus)": generate_mermaid_from_transitions(
            REMITTANCE_TRANSITIONS, REMITTANCE_LABELS, RemittanceStatus.PENDING,
        ),
    }


def format_diagrams_as_markdown(diagrams: dict[str, str]) -> str:
    sections: list[str] = ["# State diagrams\n", "Generated by `scripts/generate_state_diagrams.py`.\n"]
    for name, mermaid_code in diagrams.items():
        sections.append(f"## {name}\n")
        sections.append(f"```mermaid\n{mermaid_code}\n```\n")
    sections.append("## Dashboard buckets\n")
    sections.append(generate_bucket_table() + "\n")
    return "\n".join(sections)


def check_diagrams(markdown_content: str, path: Path = DIAGRAMS_PATH) -> bool:
    """Return True when the file at ``path`` matches the generated markdown"""
    if not path.exists():
        print(f"error: {path} does not exist")
        return False
    if path.read_text(encoding="utf-8") == markdown_content:
        print("State diagrams are up to date")
        return True
    print(f"error: {path} is stale")
    print("run: python scripts/generate_state_diagrams.py --write")
    return False


def write_diagrams(markdown_content: str, path: Path = DIAGRAMS_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(markdown_content, encoding="utf-8")
    print(f"updated: {path}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate Mermaid diagrams from the status machines"
    )
    parser.add_argument("--write", action="store_true", help="refresh docs/STATE_DIAGRAMS.md")
    parser.add_argument("--check", action="store_true", help="exit 1 if the diagrams doc is stale")
    args = parser.parse_args()

    markdown = format_diagrams_as_markdown(generate_all_diagrams())

    if args.check:
        sys.exit(0 if check_diagrams(markdown) else 1)
    elif args.write:
        write_diagrams(markdown)
    else:
        print(markdown)


if __name__ == "__main__":
    main()
