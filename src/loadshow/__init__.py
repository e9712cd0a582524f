"""loadshow — turn a web page load into a video.

Record a page loading in a throttled browser (screencast + network
telemetry), composite each captured frame with an information banner and
a progress bar into a multi-column layout, and encode the frames into a
single video with ffmpeg.
"""
