"""
Services Package for the Inline Transcoder.

This package contains the "service layer" of the application. Each service
performs one stage of a conversion and knows nothing about the stages around it;
the pipeline in `inline_transcoder.pipeline` wires them together.

- **Fetch Service (`MediaFetcher`):**
  Downloads the attachment into memory under a deadline and a size ceiling.

- **Probe Service (`MediaProber`):**
  Rejects near-empty payloads and inputs that ffprobe cannot read.

- **Strategy (`build_strategy_table`, `build_reencode_tier`):**
  Describes which encodes to try, in which order, as plain data.

- **Transcode Service (`TranscodeExecutor`):**
  Runs the strategy table through one generic loop, each tier with its own
  deadline, and falls back to the next tier on failure.

- **Size Governor (`SizeGovernor`):**
  Accepts an artifact within budget or performs exactly one re-encode.

- **Packaging Service (`package`):**
  Base64-encodes the final artifact into the inline envelope.

- **Logging Service (`ErrorLog`):**
  Appends failures to a plain-text file, separate from console logging.
"""
