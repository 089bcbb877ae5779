"""Voice profile model, synthesis and confidence scoring."""
from voice_dna.profile.models import DEFAULT_VOICE_PROFILE, VoiceProfile, default_profile_for
from voice_dna.profile.synthesizer import VoiceProfileSynthesizer

__all__ = [
    "DEFAULT_VOICE_PROFILE",
    "VoiceProfile",
    "default_profile_for",
    "VoiceProfileSynthesizer",
]
