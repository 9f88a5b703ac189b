"""
Services Module

Provider client, outbound dispatcher, default collaborators and the webhook
processor.
"""
