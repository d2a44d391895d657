"""Voice subsystem.

Speech output (Piper synthesis + playback) and dual-tier speech capture (live
recognition with a record-and-transcribe fallback). Hardware and model
dependencies are imported lazily so text-only sessions do not need them.
"""
