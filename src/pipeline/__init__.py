"""
Imagery Processing Pipeline

- saga: ordered steps with compensation for the upload path
- transforms: resize, thumbnail and watermark operations
- worker: stream consumer applying the requested operations per task
"""
