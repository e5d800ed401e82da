import base64


# Streaming
CHUNK_SIZE = 256 * 1024  # 256 KiB, reader and obfuscation re-read

# Digest / key sizes
DIGEST_SIZE = 20  # SHA-1
KEY_SIZE = 32     # AES-256, SHA-256 of the secret
BLOCK_SIZE = 16   # AES block and IV size

# Legacy contract: every artifact is encrypted with this one IV. Changing it
# breaks compatibility with previously sealed files.
FIXED_IV = base64.b64decode("9G2RgCPP0z9w0ZP+5MNVaw==")

# Compression (zlib default level)
DEFAULT_COMPRESSION_LEVEL = -1

# Progress value used by stages that cannot report byte granularity
INDETERMINATE = -1

SEALED_SUFFIX = ".enc"
TEMP_SUFFIX = ".tmp"

# Stage names (keys of the timing table and progress events)
STAGE_FILE = "file"
STAGE_CHECKSUM = "checksum"
STAGE_ZIP = "zip"
STAGE_AES = "aes"
STAGE_XOR = "xor"

STAGES = (STAGE_FILE, STAGE_CHECKSUM, STAGE_ZIP, STAGE_AES, STAGE_XOR)
