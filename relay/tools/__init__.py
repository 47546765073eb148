from relay.tools.whatsapp import WhatsAppClient, build_whatsapp_client

__all__ = ["WhatsAppClient", "build_whatsapp_client"]
