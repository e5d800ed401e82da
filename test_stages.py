from __future__ import annotations

import os
import tempfile
import unittest
import zlib
from pathlib import Path

from capsule import encryption
from capsule.codec import Codec
from capsule.constants import BLOCK_SIZE, CHUNK_SIZE, DIGEST_SIZE, FIXED_IV, STAGES
from capsule.encryption import CipherContext
from capsule.errors import (
    CipherError,
    CompressionError,
    FileAccessError,
    TempStorageError,
)
from capsule.events import CompletedEvent
from capsule.hashutil import derive_key, digest, digests_equal, split_digest
from capsule.obfuscate import temp_path_for, toggle_xor, xor_bytes
from capsule.reader import read_file
from capsule.storage import DirectorySaver, sealed_filename, unsealed_filename
from capsule.telemetry import StageTimings


class DigestTests(unittest.TestCase):
    def test_digest_is_twenty_bytes_and_pure(self):
        d1 = digest(b"hello world")
        d2 = digest(b"hello world")
        self.assertEqual(len(d1), DIGEST_SIZE)
        self.assertEqual(d1, d2)
        self.assertEqual(d1.hex(), "2aae6c35c94fcfb415dbe95f408b9ce91ee846ed")
        self.assertEqual(len(digest(b"")), DIGEST_SIZE)

    def test_digests_equal(self):
        self.assertTrue(digests_equal(digest(b"a"), digest(b"a")))
        self.assertFalse(digests_equal(digest(b"a"), digest(b"b")))
        self.assertFalse(digests_equal(digest(b"a"), digest(b"a")[:10]))

    def test_derive_key(self):
        k = derive_key("secret")
        self.assertEqual(len(k), 32)
        self.assertEqual(k, derive_key(b"secret"))
        self.assertNotEqual(k, derive_key("Secret"))
        self.assertEqual(len(derive_key(b"")), 32)
        self.assertEqual(len(derive_key(b"x" * 10_000)), 32)

    def test_split_digest(self):
        stored, rest = split_digest(b"D" * DIGEST_SIZE + b"payload")
        self.assertEqual(stored, b"D" * DIGEST_SIZE)
        self.assertEqual(rest, b"payload")


class CodecTests(unittest.TestCase):
    def test_roundtrip(self):
        codec = Codec()
        for data in (b"", b"a", b"hello world\n" * 1000, os.urandom(70_000)):
            self.assertEqual(codec.decompress(codec.compress(data)), data)

    def test_output_is_zlib_stream(self):
        data = b"abc" * 100
        self.assertEqual(zlib.decompress(Codec(9).compress(data)), data)

    def test_garbage_input(self):
        with self.assertRaises(CompressionError):
            Codec().decompress(b"definitely not deflate")

    def test_truncated_stream(self):
        packed = Codec().compress(os.urandom(4096))
        with self.assertRaises(CompressionError):
            Codec().decompress(packed[:-10])

    def test_trailing_data(self):
        packed = Codec().compress(b"payload")
        with self.assertRaises(CompressionError):
            Codec().decompress(packed + b"extra")


class CipherTests(unittest.TestCase):
    def test_roundtrip_and_padding(self):
        ctx = CipherContext.from_secret("pw")
        for n in (0, 1, 15, 16, 17, 1000):
            data = os.urandom(n)
            ct = ctx.encrypt(data)
            self.assertEqual(len(ct) % BLOCK_SIZE, 0)
            self.assertGreater(len(ct), n)
            self.assertEqual(ctx.decrypt(ct), data)

    def test_deterministic_with_fixed_iv(self):
        self.assertEqual(len(FIXED_IV), BLOCK_SIZE)
        a = CipherContext.from_secret("pw").encrypt(b"same plaintext" * 4)
        b = CipherContext.from_secret("pw").encrypt(b"same plaintext" * 4)
        self.assertEqual(a, b)

    def test_shared_prefix_leaks_with_fixed_iv(self):
        ctx = CipherContext.from_secret("pw")
        a = ctx.encrypt(b"A" * 32 + b"tail one")
        b = ctx.encrypt(b"A" * 32 + b"different tail")
        self.assertEqual(a[:32], b[:32])

    def test_secret_changes_ciphertext(self):
        data = b"non-trivial plaintext" * 3
        a = CipherContext.from_secret("one").encrypt(data)
        b = CipherContext.from_secret("two").encrypt(data)
        self.assertNotEqual(a, b)

    def test_decrypt_bad_length(self):
        ctx = CipherContext.from_secret("pw")
        with self.assertRaises(CipherError) as cm:
            ctx.decrypt(b"\x00" * 17)
        self.assertEqual(str(cm.exception), "Decrypt failed")
        with self.assertRaises(CipherError):
            ctx.decrypt(b"")

    def test_decrypt_bad_padding(self):
        ctx = CipherContext.from_secret("pw")
        ct = bytearray(ctx.encrypt(b"x" * 16))
        # CBC: flipping block 0 flips the same byte of plaintext block 1,
        # turning the 0x10 pad byte into 0xEF.
        ct[15] ^= 0xFF
        with self.assertRaises(CipherError):
            ctx.decrypt(bytes(ct))

    def test_module_is_documented(self):
        self.assertIn("AES-256-CBC", encryption.__doc__)

    def test_rejects_bad_key_length(self):
        with self.assertRaises(ValueError):
            CipherContext(b"short")


class XorTests(unittest.TestCase):
    def test_every_byte_once(self):
        data = bytes(range(256)) * 3
        out = xor_bytes(data, 0x5A)
        self.assertEqual(out, bytes(b ^ 0x5A for b in data))
        self.assertEqual(xor_bytes(out, 0x5A), data)

    def test_legacy_stride_skips_multiples_of_sixteen(self):
        data = bytes(range(1, 41))
        out = xor_bytes(data, 0xFF, legacy_stride=True)
        for i, (a, b) in enumerate(zip(data, out)):
            if i and i % 16 == 0:
                self.assertEqual(a, b, i)
            else:
                self.assertEqual(a ^ 0xFF, b, i)
        self.assertEqual(xor_bytes(out, 0xFF, legacy_stride=True), data)

    def test_rejects_wide_key(self):
        with self.assertRaises(ValueError):
            xor_bytes(b"abc", 256)

    def test_toggle_xor_spills_and_cleans_up(self):
        with tempfile.TemporaryDirectory() as tmp:
            data = os.urandom(10_000)
            seen = []
            out = toggle_xor(
                data, 7, job_id="job1", chunk_size=4096, tempdir=tmp,
                on_progress=lambda total, done: seen.append((total, done)),
            )
            self.assertEqual(out, xor_bytes(data, 7))
            self.assertEqual(seen, [(10_000, 0), (10_000, 4096), (10_000, 8192), (10_000, 10_000)])
            self.assertFalse(os.path.exists(temp_path_for("job1", tmp)))
            self.assertEqual(os.listdir(tmp), [])

    def test_toggle_xor_legacy_per_chunk(self):
        with tempfile.TemporaryDirectory() as tmp:
            data = os.urandom(100)
            out = toggle_xor(data, 0x33, job_id="j", chunk_size=40, tempdir=tmp, legacy_stride=True)
            expected = b"".join(
                xor_bytes(data[i:i + 40], 0x33, legacy_stride=True) for i in range(0, 100, 40)
            )
            self.assertEqual(out, expected)

    def test_toggle_xor_empty(self):
        with tempfile.TemporaryDirectory() as tmp:
            seen = []
            out = toggle_xor(b"", 1, job_id="empty", tempdir=tmp, on_progress=lambda t, d: seen.append((t, d)))
            self.assertEqual(out, b"")
            self.assertEqual(seen, [(0, 0)])

    def test_toggle_xor_unwritable_tempdir(self):
        with tempfile.TemporaryDirectory() as tmp:
            missing = os.path.join(tmp, "nope", "deeper")
            with self.assertRaises(TempStorageError):
                toggle_xor(b"data", 1, job_id="x", tempdir=missing)


class ReaderTests(unittest.TestCase):
    def test_progress_per_chunk(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "f.bin"
            data = os.urandom(2500)
            p.write_bytes(data)
            seen = []
            out = read_file(str(p), chunk_size=1000, on_progress=lambda t, l: seen.append((t, l)))
            self.assertEqual(out, data)
            self.assertEqual(seen, [(2500, 0), (2500, 1000), (2500, 2000), (2500, 2500)])

    def test_exact_chunk_reports_total_once_at_end(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "chunk.bin"
            p.write_bytes(b"\xAB" * CHUNK_SIZE)
            seen = []
            out = read_file(str(p), on_progress=lambda t, l: seen.append((t, l)))
            self.assertEqual(len(out), CHUNK_SIZE)
            complete = [ev for ev in seen if ev[1] == ev[0]]
            self.assertEqual(complete, [(CHUNK_SIZE, CHUNK_SIZE)])
            self.assertEqual(seen[-1], (CHUNK_SIZE, CHUNK_SIZE))

    def test_empty_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            p = Path(tmp) / "empty"
            p.write_bytes(b"")
            seen = []
            self.assertEqual(read_file(str(p), on_progress=lambda t, l: seen.append((t, l))), b"")
            self.assertEqual(seen, [(0, 0)])

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileAccessError) as cm:
                read_file(os.path.join(tmp, "missing.bin"))
            self.assertTrue(str(cm.exception))
            self.assertEqual(cm.exception.code, -1)

    def test_directory_is_not_readable(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileAccessError):
                read_file(tmp)


class StorageTests(unittest.TestCase):
    def test_sealed_filename(self):
        self.assertEqual(sealed_filename("/a/b/report.final.pdf"), "report.enc")
        self.assertEqual(sealed_filename("photo"), "photo.enc")
        self.assertEqual(sealed_filename(".bashrc"), ".bashrc.enc")

    def test_unsealed_filename(self):
        self.assertEqual(unsealed_filename("/x/photo.enc", "png"), "photo.png")
        self.assertEqual(unsealed_filename("photo.png.enc", "png"), "photo.png")
        self.assertEqual(unsealed_filename("notes.enc", None), "notes")
        self.assertEqual(unsealed_filename("blob.bin", None), "blob.bin")
        self.assertEqual(unsealed_filename(".enc", None), ".enc")

    def test_directory_saver_policies(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            saver = DirectorySaver(str(root / "out"))
            first = saver.save("a.enc", b"one")
            self.assertEqual(Path(first).read_bytes(), b"one")

            second = saver.save("a.enc", b"two")
            self.assertEqual(Path(second).name, "a (1).enc")
            self.assertEqual(Path(first).read_bytes(), b"one")

            self.assertIsNone(DirectorySaver(str(root / "out"), exists="skip").save("a.enc", b"three"))
            self.assertEqual(Path(first).read_bytes(), b"one")

            DirectorySaver(str(root / "out"), exists="overwrite").save("a.enc", b"four")
            self.assertEqual(Path(first).read_bytes(), b"four")

            with self.assertRaises(FileAccessError):
                DirectorySaver(str(root / "out"), exists="fail").save("a.enc", b"five")
            self.assertEqual(sorted(os.listdir(root / "out")), ["a (1).enc", "a.enc"])

    def test_directory_in_the_way(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp)
            (out / "a.enc").mkdir()
            for policy in ("rename", "overwrite", "fail"):
                with self.subTest(policy=policy):
                    with self.assertRaises(FileAccessError):
                        DirectorySaver(str(out), exists=policy).save("a.enc", b"x")
            self.assertEqual(os.listdir(out), ["a.enc"])

    def test_unknown_policy(self):
        with self.assertRaises(ValueError):
            DirectorySaver(".", exists="clobber")


class TelemetryTests(unittest.TestCase):
    def test_measure_and_snapshot(self):
        ticks = iter(range(100, 200, 10))
        t = StageTimings(clock=lambda: next(ticks))
        with t.measure("zip"):
            pass
        snap = t.snapshot()
        self.assertEqual(set(snap), set(STAGES))
        self.assertEqual(snap["zip"], {"start": 100, "end": 110})
        self.assertEqual(snap["aes"], {"start": 0, "end": 0})
        self.assertEqual(t.duration_ms("zip"), 10)
        self.assertEqual(t.duration_ms("aes"), 0)
        snap["zip"]["end"] = 0
        self.assertEqual(t.snapshot()["zip"]["end"], 110)

    def test_completed_event_payload_shape(self):
        ev = CompletedEvent("id1", "/tmp/x.enc", 10, 48, {"file": {"start": 1, "end": 2}})
        payload = ev.to_dict()
        self.assertEqual(payload["uuid"], "id1")
        self.assertIsNone(payload["message"])
        self.assertEqual(payload["data"]["size"], {"before": 10, "after": 48})
        self.assertEqual(payload["data"]["debug"]["file"]["end"], 2)


if __name__ == "__main__":
    unittest.main()
