"""
Services for the Jerry voice agent: reply generation and call session management
"""
