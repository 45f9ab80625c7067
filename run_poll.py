"""Reference runner: three polls created, voted and revealed concurrently.

Start a local ledger first (python -m mxe_voting.localnet), or point
SOLANA_RPC_URL / VOTING_NETWORK at a deployment, then run this script from
the repository root.
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from mxe_voting import PollSession, config_from_env, load_identity, run_polls  # noqa: E402
from mxe_voting.keys import Identity  # noqa: E402

POLL_IDS = [420, 421, 422]

# votes chosen so the revealed outcomes are True, False, True
VOTES = {
    420: [True, True, False],
    421: [False, False, True],
    422: [True, False, True],
}


def _print_heading(msg: str):
    print()
    print(msg)


def _print_kv(key: str, value: str):
    print(f"  {key}: {value}")


def main():
    p = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    p.add_argument("--env-file", default=None, help="dotenv file with the session settings")
    p.add_argument("--ephemeral", action="store_true", help="use a throwaway identity instead of the wallet file")
    p.add_argument("--verbose", "-v", action="store_true")
    args = p.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    config = config_from_env(args.env_file)
    identity = Identity.generate() if args.ephemeral else load_identity(config.identity_path)

    _print_heading("[Setup]")
    _print_kv("network", config.network.value)
    _print_kv("rpc", config.rpc_url)
    _print_kv("cluster offset", str(config.cluster_offset))
    _print_kv("authority", identity.address)

    with PollSession(config, identity) as session:
        created = session.initialize_comp_defs()
        _print_kv("comp defs initialized", str(len(created)))
        _print_kv("encryption pubkey", session.encryption_keypair().public_key.hex())
        _print_kv("cluster pubkey", session.key_fetcher.fetch().hex()[:16] + "..")

        _print_heading("[Polls] create -> vote -> reveal")
        polls = {poll_id: (f"Poll {poll_id}: test", VOTES[poll_id]) for poll_id in POLL_IDS}
        results = run_polls(session, polls, max_workers=len(POLL_IDS))

    _print_heading("[Results]")
    for poll_id in POLL_IDS:
        votes = VOTES[poll_id]
        _print_kv(f"poll {poll_id}", f"{results[poll_id]} ({sum(votes)} yes / {len(votes) - sum(votes)} no)")


if __name__ == "__main__":
    main()
