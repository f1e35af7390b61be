"""
Collaborators used by the pipeline: external-tool stages (encoder, thumbnail,
packager), storage, progress fan-out and the per-video file logs.
"""
