# Bridge-level constants

BOT_PREFIX = "🔹 "
CURRENT_CHAT_MARK = "📍"

# Pairing tokens: "/connect $mbb2$<20 alphanumeric chars>"
TOKEN_MARKER = "$mbb2$"
TOKEN_LENGTH = 20
TOKEN_TTL_S = 3600.0

ERROR_ID_LENGTH = 10

# Store collections
C_CONVERSATIONS = "conversations"
C_PERSONS = "persons"
C_CONNECTIONS = "connections"

# Event kinds
EV_MESSAGE = "message"
EV_COMMAND = "command"

# RRC protocol constants (numeric keys and message types), used by the
# Reticulum Relay Chat provider.

RRC_VERSION = 1
RRC_PROVIDER = "rrc"

# Envelope keys
K_V = 0
K_T = 1
K_ID = 2
K_TS = 3
K_SRC = 4
K_ROOM = 5
K_BODY = 6
K_NICK = 7

# Message types
T_HELLO = 1
T_WELCOME = 2

T_JOIN = 10
T_JOINED = 11

T_MSG = 20

T_PING = 30
T_PONG = 31

T_ERROR = 40

# HELLO body keys
B_HELLO_NAME = 0
B_HELLO_VER = 1
