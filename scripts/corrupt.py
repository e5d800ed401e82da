from __future__ import annotations

import argparse
import os
import random
import sys
from typing import Optional

from capsule.constants import BLOCK_SIZE
from capsule.errors import CapsuleError


def _flip_byte(path: str, offset: int, xor_val: int = 0xFF) -> None:
    if offset < 0:
        raise ValueError("Offset must be non-negative")
    with open(path, "r+b") as f:
        f.seek(offset)
        b = f.read(1)
        if not b:
            raise ValueError("Offset beyond end of file")
        f.seek(offset)
        f.write(bytes([b[0] ^ (xor_val & 0xFF)]))
        f.flush()
        os.fsync(f.fileno())


def cmd_by_offset(args: argparse.Namespace) -> None:
    _flip_byte(args.artifact, args.offset, xor_val=args.xor)
    print(f"Flipped 1 byte at offset {args.offset}")


def cmd_block(args: argparse.Namespace) -> None:
    size = os.path.getsize(args.artifact)
    blocks = size // BLOCK_SIZE
    if args.index < 0 or args.index >= blocks:
        raise ValueError(f"Block index out of range (0..{blocks - 1})")
    if args.within < 0 or args.within >= BLOCK_SIZE:
        raise ValueError(f"--within must be within a cipher block (0..{BLOCK_SIZE - 1})")
    off = args.index * BLOCK_SIZE + args.within
    _flip_byte(args.artifact, off, xor_val=args.xor)
    print(f"Flipped 1 byte in cipher block {args.index} at offset {off}")


def cmd_random(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    flips = 0
    size = os.path.getsize(args.artifact)
    if size == 0:
        raise ValueError("Artifact is empty")
    with open(args.artifact, "r+b") as f:
        for _ in range(args.count):
            pos = rng.randrange(0, size)
            f.seek(pos)
            b = f.read(1)
            if not b:
                continue
            f.seek(pos)
            f.write(bytes([b[0] ^ (args.xor & 0xFF)]))
            flips += 1
        f.flush()
        os.fsync(f.fileno())
    print(f"Flipped {flips} byte(s) at random offsets")


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="capsule.corrupt", description="Corrupt sealed artifacts for testing")
    sub = ap.add_subparsers(dest="cmd", required=False)

    p_off = sub.add_parser("by-offset", help="Flip one byte at an absolute offset")
    p_off.add_argument("artifact", help="Path to a sealed .enc file")
    p_off.add_argument("--offset", type=int, required=True, help="Absolute byte offset")
    p_off.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_off.set_defaults(func=cmd_by_offset)

    p_blk = sub.add_parser("block", help="Flip a byte within a given 16-byte cipher block")
    p_blk.add_argument("artifact", help="Path to a sealed .enc file")
    p_blk.add_argument("--index", type=int, required=True, help="Block index (0-based; block 0-1 cover the digest)")
    p_blk.add_argument("--within", type=int, default=0, help="Byte offset within the block (default 0)")
    p_blk.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_blk.set_defaults(func=cmd_block)

    p_rand = sub.add_parser("random", help="Flip N random bytes anywhere in the artifact")
    p_rand.add_argument("artifact", help="Path to a sealed .enc file")
    p_rand.add_argument("--count", type=int, default=1, help="Number of random byte flips (default 1)")
    p_rand.add_argument("--seed", type=int, default=None, help="PRNG seed for reproducibility")
    p_rand.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_rand.set_defaults(func=cmd_random)

    # Bare artifact path: one random flip
    subcommands = {"by-offset", "block", "random"}
    if argv is None:
        argv = sys.argv[1:]
    if argv and (argv[0] not in subcommands) and (not argv[0].startswith("-")):
        argv = ["random"] + list(argv)

    args = ap.parse_args(argv)
    if not getattr(args, "func", None):
        ap.print_help()
        sys.exit(2)
    try:
        args.func(args)
    except (CapsuleError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
