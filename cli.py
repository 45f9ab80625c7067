"""Small CLI for driving polls against a ledger endpoint.

Usage examples:
    python cli.py keys
    python cli.py init
    python cli.py create --poll 420 --description "Poll 420: test"
    python cli.py vote --poll 420 --yes
    python cli.py reveal --poll 420
    python cli.py poll --poll 421 --votes yes,no,no
"""

import argparse
import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from mxe_voting import PollSession, VotingError, config_from_env, load_identity  # noqa: E402


def _parse_votes(value: str):
    votes = []
    for item in value.split(","):
        item = item.strip().lower()
        if item not in ("yes", "no"):
            raise argparse.ArgumentTypeError(f"vote must be yes or no, got {item!r}")
        votes.append(item == "yes")
    return votes


def keys(session: PollSession):
    keypair = session.encryption_keypair()
    print(json.dumps({"authority": session.identity.address, "encryptionPubkey": keypair.public_key.hex()}))


def init(session: PollSession):
    print(json.dumps({"signatures": session.initialize_comp_defs()}))


def create(session: PollSession, poll_id: int, description: str):
    result = session.create_poll(poll_id, description)
    print(json.dumps({"poll": poll_id, "offset": result.offset, "signature": result.signature}))


def vote(session: PollSession, poll_id: int, choice: bool):
    event = session.cast_vote(poll_id, choice)
    print(json.dumps({"poll": poll_id, "offset": event.offset, "timestamp": event.timestamp}))


def reveal(session: PollSession, poll_id: int):
    print(json.dumps({"poll": poll_id, "result": session.reveal_result(poll_id)}))


def poll(session: PollSession, poll_id: int, description: str, votes):
    print(json.dumps({"poll": poll_id, "result": session.run_poll(poll_id, description, votes)}))


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--env-file", default=None)
    p.add_argument("--verbose", "-v", action="store_true")
    sub = p.add_subparsers(dest="cmd")
    sub.add_parser("keys")
    sub.add_parser("init")
    c = sub.add_parser("create")
    c.add_argument("--poll", type=int, required=True)
    c.add_argument("--description", required=True)
    v = sub.add_parser("vote")
    v.add_argument("--poll", type=int, required=True)
    choice = v.add_mutually_exclusive_group(required=True)
    choice.add_argument("--yes", dest="choice", action="store_true")
    choice.add_argument("--no", dest="choice", action="store_false")
    r = sub.add_parser("reveal")
    r.add_argument("--poll", type=int, required=True)
    a = sub.add_parser("poll")
    a.add_argument("--poll", type=int, required=True)
    a.add_argument("--description", default=None)
    a.add_argument("--votes", type=_parse_votes, required=True, help="comma separated yes/no list")
    args = p.parse_args()

    if args.cmd is None:
        p.print_help()
        return
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    config = config_from_env(args.env_file)
    with PollSession(config, load_identity(config.identity_path)) as session:
        try:
            if args.cmd == "keys":
                keys(session)
            elif args.cmd == "init":
                init(session)
            elif args.cmd == "create":
                create(session, args.poll, args.description)
            elif args.cmd == "vote":
                vote(session, args.poll, args.choice)
            elif args.cmd == "reveal":
                reveal(session, args.poll)
            elif args.cmd == "poll":
                poll(session, args.poll, args.description or f"Poll {args.poll}", args.votes)
        except VotingError as e:
            print(f"error: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
