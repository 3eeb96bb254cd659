"""Generate synthetic channel histories for development and testing."""

from __future__ import annotations

import argparse
import random
from datetime import UTC, datetime
from pathlib import Path

from activity_summarizer.io.save import save_jsonl


def _topic(*, name: str, lines: list[str]) -> dict:
    return {"name": name, "lines": lines}


_TOPICS: list[dict] = [
    _topic(
        name="deploy",
        lines=[
            "Deploy of the billing service is rolling out to canary {variant}.",
            "Canary error rate looks flat so far.",
            "Promoting build {variant} to the full fleet now.",
            "Rollout finished, dashboards are green.",
        ],
    ),
    _topic(
        name="incident",
        lines=[
            "Pager fired for elevated latency on the search API.",
            "Looks like the cache cluster lost a node around {variant} past the hour.",
            "Failing over to the replica while we investigate.",
            "Latency is back under the SLO, writing up the timeline.",
        ],
    ),
    _topic(
        name="review",
        lines=[
            "Could someone review PR #{variant} for the export job?",
            "Left a few comments on the retry logic.",
            "Addressed the feedback and pushed a new revision.",
            "Approved, feel free to merge.",
        ],
    ),
    _topic(
        name="planning",
        lines=[
            "Sprint planning moves to Thursday this week.",
            "I will bring the estimate for ticket {variant}.",
            "Can we cap the sprint at eight stories?",
            "Sounds good, agenda is in the doc.",
        ],
    ),
    _topic(
        name="lunch",
        lines=[
            "Anyone up for tacos at noon?",
            "I am in, meet at the lobby.",
            "Save me a seat, running {variant} minutes late.",
        ],
    ),
]

_USERS = ["U001", "U002", "U003", "U004", "U005"]
_START = datetime(2025, 1, 13, 8, 0, tzinfo=UTC)


def _format_ts(seconds: float) -> str:
    return f"{seconds:.6f}"


def _unique_ts(seconds: float, used: set[str]) -> str:
    """Format seconds as a ts id, nudging by one microsecond until unused."""

    ts = _format_ts(seconds)
    while ts in used:
        seconds += 0.000001
        ts = _format_ts(seconds)
    used.add(ts)
    return ts


def _channel_messages(
    channel: str,
    *,
    bursts: int,
    rng: random.Random,
) -> list[dict]:
    """Build one channel's history as bursts separated by idle gaps.

    Every other burst opens a thread on its first message, with replies that
    may trail well past the burst itself.
    """

    clock = _START.timestamp() + rng.randint(0, 600)
    used: set[str] = set()
    messages: list[dict] = []

    for burst_index in range(bursts):
        topic = _TOPICS[rng.randrange(len(_TOPICS))]
        variant = rng.randint(10, 99)
        burst: list[dict] = []
        for line in topic["lines"]:
            clock += rng.randint(5, 240)
            burst.append(
                {
                    "ts": _unique_ts(clock, used),
                    "channel": channel,
                    "user": rng.choice(_USERS),
                    "text": line.format(variant=variant),
                }
            )

        if rng.random() < 0.3:
            clock += rng.randint(5, 60)
            burst.append(
                {
                    "ts": _unique_ts(clock, used),
                    "channel": channel,
                    "user": rng.choice(_USERS),
                    "text": "",
                    "subtype": "channel_join",
                }
            )

        if burst_index % 2 == 0:
            root = burst[0]
            root["thread_ts"] = root["ts"]
            reply_clock = float(root["ts"])
            for reply_index in range(rng.randint(1, 3)):
                reply_clock += rng.randint(30, 5400)
                burst.append(
                    {
                        "ts": _unique_ts(reply_clock, used),
                        "channel": channel,
                        "user": rng.choice(_USERS),
                        "text": f"Thread follow-up {reply_index + 1} on {topic['name']}.",
                        "thread_ts": root["ts"],
                    }
                )

        messages.extend(burst)
        clock += rng.randint(3600, 3 * 3600)

    messages.sort(key=lambda record: float(record["ts"]))
    return messages


def generate_mock_messages(
    channel_count: int = 3,
    bursts_per_channel: int = 6,
    seed: int = 7,
) -> list[dict]:
    """Generate a deterministic multi-channel message history."""

    if channel_count <= 0:
        raise ValueError(f"channel_count must be positive, got {channel_count}.")
    if bursts_per_channel <= 0:
        raise ValueError(f"bursts_per_channel must be positive, got {bursts_per_channel}.")

    rng = random.Random(seed)
    output: list[dict] = []
    for index in range(channel_count):
        output.extend(
            _channel_messages(f"C{index + 1:03d}", bursts=bursts_per_channel, rng=rng)
        )
    return output


def write_mock_messages(path: str | Path, messages: list[dict]) -> Path:
    """Write generated messages to JSONL."""

    return save_jsonl(path, messages)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="generate-mock-messages",
        description="Generate mock channel message JSONL data.",
    )
    parser.add_argument(
        "--channels",
        type=int,
        default=3,
        help="Number of channels to generate.",
    )
    parser.add_argument(
        "--bursts",
        type=int,
        default=6,
        help="Activity bursts per channel.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=7,
        help="Deterministic generation seed.",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="data/mock/messages.jsonl",
        help="Output JSONL path.",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    messages = generate_mock_messages(
        channel_count=args.channels,
        bursts_per_channel=args.bursts,
        seed=args.seed,
    )
    out_path = write_mock_messages(args.output, messages)
    print(f"Generated {len(messages)} mock messages at {out_path}")


if __name__ == "__main__":
    main()
