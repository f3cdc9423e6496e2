"""
Generation backend configuration.

Model versions, provider endpoints and prompt presets.
"""

# Replicate models
SDXL_MODEL = "stability-ai/sdxl"
SDXL_VERSION = "39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
REAL_ESRGAN_MODEL = "nightmareai/real-esrgan"
REAL_ESRGAN_VERSION = "42fed1c4974146d4d2414e2be2c5277c7fcf05fcc3a73abf41610695738c1d7b"
SVD_MODEL = "stability-ai/stable-video-diffusion"
SVD_VERSION = "3f0457e4619daac51203dedb1a4919c746077dc4589434d17a76b83b5caca4dd"

# Provider endpoints
RUNWAY_BASE_URL = "https://api.dev.runwayml.com/v1"
RUNWAY_MODEL = "gen2"
RUNWAY_CLIP_SECONDS = 4
ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
ELEVENLABS_MODEL = "eleven_multilingual_v2"
HEDRA_BASE_URL = "https://mercury.dev.hedra.com/api/v1"

# Script writer
SCRIPT_TEMPERATURE = 0.8
SCRIPT_MAX_TOKENS = 2000
SCENE_SECONDS_TARGET = 6
MIN_SCENES = 2
MAX_SCENES = 8
MIN_SCENE_SECONDS = 3.0
MAX_SCENE_SECONDS = 10.0
SCRIPT_EMOTIONS = ("positive", "neutral", "dramatic", "energetic")

# Image prompts per visual style
STYLE_PROMPTS = {
    "cinematic": "cinematic lighting, film grain, dramatic composition, professional photography",
    "realistic": "photorealistic, high resolution, detailed, natural lighting",
    "animated": "animation style, vibrant colors, stylized, cartoon-like",
    "artistic": "artistic interpretation, painterly style, creative composition",
    "minimalist": "clean composition, minimalist design, simple background, elegant",
}

NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, text, watermark, signature, logo, username, "
    "low resolution, worst quality, normal quality, jpeg artifacts"
)

# Voice ids keyed by gender_language_accent_tone
VOICE_MAP = {
    "female_en_american_conversational": "EXAVITQu4vr4xnSDxMaL",
    "female_en_american_professional": "MF3mGyEYCl7XYWbV9V6O",
    "female_en_british_conversational": "21m00Tcm4TlvDq8ikWAM",
    "female_en_british_professional": "AZnzlk1XvdvUeBnXmlld",
    "male_en_american_conversational": "TxGEqnHWrfWFTfGW9XjX",
    "male_en_american_professional": "VR6AewLTigWG4xSOukaG",
    "male_en_british_conversational": "onwK4e9ZLuTAKqWW03F9",
    "male_en_british_professional": "IKne3meq5aSn9XLyUdCD",
    "neutral_en_american_conversational": "pNInz6obpgDQGcFmaJgB",
    "neutral_en_british_conversational": "Xb7hH8MSUJpSbSDYk0k2",
}
DEFAULT_VOICE_KEY = "female_en_american_conversational"
