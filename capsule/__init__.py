"""
Capsule: seal a file into an opaque artifact and back.

Stages, in seal order:

- Chunked load of the source file with progress reporting.
- SHA-1 digest of the plaintext, stored inside the artifact.
- Whole-buffer deflate (zlib).
- AES-256-CBC with a SHA-256-derived key and a fixed IV (PKCS#7 padding).
- Single-byte XOR pass, streamed through a per-job temp file.

Unsealing reverses the stages and verifies the digest in constant time before
anything is written. Every run reports progress, one terminal event and a
per-stage timing table to an event sink.

Security note: the fixed IV and one-byte XOR key are kept for artifact
compatibility; treat the result as obfuscation, not state-of-the-art
encryption.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "pipeline",
    "runner",
    "events",
]

# Programmatic API: capsule.pipeline.Pipeline / seal_file / unseal_file for
# one job, capsule.runner.JobRunner for several, and capsule.cli.cmd_seal /
# cmd_unseal for the command-line behaviour with normal parameters.
