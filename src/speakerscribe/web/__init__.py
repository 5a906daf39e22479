"""Web API for SpeakerScribe."""
