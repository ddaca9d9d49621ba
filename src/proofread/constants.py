"""Default configuration values for proofread."""

from typing import Final

# Special symbols shared by the vocabulary and character codecs
PAD_TOKEN_ID: Final = 0
EOS_TOKEN_ID: Final = 1
UNK_TOKEN_ID: Final = 2
SPACE_TOKEN_ID: Final = 3
DECODER_START_TOKEN_ID: Final = PAD_TOKEN_ID
UNKNOWN_PLACEHOLDER: Final = "?"
WHITESPACE_MARKER: Final = "▁"
MAX_PIECE_LENGTH: Final = 50
CHAR_CODEC_OFFSET: Final = 100
TASK_PREFIX: Final = "grammar: "

# Decoder introspection
DEFAULT_NUM_HEADS: Final = 8
CACHE_INPUT_PREFIXES: Final = ("past_key_values", "pkv")
CACHE_OUTPUT_PREFIX: Final = "present"
USE_CACHE_BRANCH_INPUT: Final = "use_cache_branch"
LOGITS_OUTPUT: Final = "logits"

# Runtime
INTRA_OP_NUM_THREADS: Final = 4
IDLE_UNLOAD_DELAY_S: Final = 10 * 60
MAX_WORKERS: Final = 2

# Preferences
DEFAULT_CONFIG_DIR: Final = "~/.config/proofread"
DEFAULT_CONFIG_DIR_ENV: Final = "PROOFREAD_CONFIG_DIR"
DEFAULT_CONFIG_FILE: Final = "preferences.json"
DEFAULT_CACHE_DIR: Final = "~/.cache/proofread/onnx_model"
DEFAULT_CACHE_DIR_ENV: Final = "PROOFREAD_CACHE_DIR"

KEY_ENCODER_PATH: Final = "offline_model_path"
KEY_DECODER_PATH: Final = "offline_decoder_path"
KEY_TOKENIZER_PATH: Final = "offline_tokenizer_path"
KEY_MAX_TOKENS: Final = "offline_max_tokens"
KEY_KEEP_MODEL_LOADED: Final = "offline_keep_model_loaded"
KEY_SYSTEM_PROMPT: Final = "offline_system_prompt"
KEY_TARGET_LANGUAGE: Final = "offline_translate_target_language"

DEFAULT_MAX_TOKENS: Final = 128
DEFAULT_KEEP_MODEL_LOADED: Final = False
DEFAULT_SYSTEM_PROMPT: Final = TASK_PREFIX
DEFAULT_TARGET_LANGUAGE: Final = "German"
TRANSLATE_PROMPT_TEMPLATE: Final = "translate English to {target}: "
