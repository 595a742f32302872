import subprocess

from transcoder import config

# ========== Engine Command ==========

# Stream copy: no re-encode, lowest CPU, output is whatever codecs the source carries
COPY_ARGS = ["-c", "copy"]

AUDIO_ARGS = ["-c:a", "aac", "-b:a", "128k", "-ar", "48000", "-ac", "2"]

# Fixed-codec H.264 output shared by every encoder
VIDEO_ARGS = ["-b:v", "6000k", "-maxrate", "6500k", "-bufsize", "12M", "-pix_fmt", "yuv420p", "-g", "60"]

# Encoder per hardware type: display name, ffmpeg codec, codec-specific tuning
ENCODERS = {
    'nvidia': ('NVIDIA NVENC', 'h264_nvenc', ["-preset", "p5", "-rc", "vbr"]),
    'intel': ('Intel QuickSync', 'h264_qsv', ["-preset", "medium"]),
    'cpu': ('CPU (libx264)', 'libx264', ["-preset", "veryfast", "-tune", "zerolatency"]),
}

# Auto-detection order
FALLBACK_CHAIN = ['nvidia', 'intel', 'cpu']


def encode_args(encoder_type: str) -> list[str]:
    _, codec, tuning = ENCODERS[encoder_type]
    return ["-c:v", codec, *tuning, *VIDEO_ARGS] + AUDIO_ARGS


def probe_args(encoder_type: str) -> list[str]:
    """A tenth of a second of null video through the encoder."""
    _, codec, _ = ENCODERS[encoder_type]
    return ['-f', 'lavfi', '-i', 'nullsrc=s=256x256:d=0.1', '-c:v', codec, '-f', 'null', '-']


def build_transcode_cmd(source: str, codec_args: list[str] | None = None) -> list[str]:
    """
    Build the ffmpeg invocation that reads `source` and writes MPEG-TS to stdout.

    stdin is left attached (no -nostdin) so the stream can be stopped with "q".
    """
    if codec_args is None:
        codec_args = COPY_ARGS
    return [
        config.FFMPEG_BIN, "-hide_banner", "-loglevel", config.FFMPEG_LOGLEVEL,
        *config.INPUT_ARGS,
        "-i", source,
        *codec_args,
        "-f", "mpegts",
        "pipe:1",  # Output to stdout
    ]


# ========== Hardware Encoder Detection ==========

def probe_encoder(encoder_type: str) -> bool:
    """Run a short null encode to check that an encoder is available and functional."""
    if encoder_type not in ENCODERS:
        return False

    name, codec, _ = ENCODERS[encoder_type]
    print(f"  Testing {name} ({codec})...")

    try:
        result = subprocess.run(
            [config.FFMPEG_BIN, '-hide_banner', '-loglevel', 'error'] + probe_args(encoder_type),
            capture_output=True,
            timeout=5
        )
    except subprocess.TimeoutExpired:
        print(f"    ✗ {name} test timed out")
        return False
    except OSError as e:
        print(f"    ✗ {config.FFMPEG_BIN} could not be run: {e}")
        return False

    if result.returncode == 0:
        print(f"    ✓ {name} is available and functional")
        return True
    error_msg = result.stderr.decode('utf-8', errors='ignore').strip()
    print(f"    ✗ {name} test failed: {error_msg[:100]}")
    return False


def detect_encoder(preference: str) -> str:
    """
    Pick the encoder to use for `preference`: a named encoder if it works,
    otherwise the first working one in FALLBACK_CHAIN. Defaults to 'cpu'.
    """
    print(f"Encoder preference: {preference}")

    if preference != 'auto':
        if preference in ENCODERS:
            if probe_encoder(preference):
                return preference
            print(f"  Encoder '{preference}' is not available, falling back to auto-detection")
        else:
            print(f"  Invalid encoder preference: '{preference}'")
            print(f"  Valid options: copy, auto, {', '.join(FALLBACK_CHAIN)}")

    for encoder_type in FALLBACK_CHAIN:
        if probe_encoder(encoder_type):
            return encoder_type

    print("WARNING: No encoders available! Defaulting to CPU")
    return 'cpu'


def codec_args_for(preference: str) -> list[str]:
    """Output codec arguments for an ENCODER setting. 'copy' skips detection."""
    if preference == 'copy':
        return list(COPY_ARGS)
    encoder_type = detect_encoder(preference)
    name, codec, _ = ENCODERS[encoder_type]
    print(f"Selected encoder: {name} ({codec})")
    return encode_args(encoder_type)
