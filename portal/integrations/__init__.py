"""portal.integrations — external storage gateway modules.

All file storage goes through a gateway in this package, never via direct
filesystem or ``requests`` calls in services or blueprints.

Current gateways:
  attachment_gateway.LocalAttachmentGateway — files on local disk
  attachment_gateway.HttpAttachmentGateway  — remote HTTP object store
"""
