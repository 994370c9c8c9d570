# bonzid protocol constants (envelope keys, event names, failure reasons)

PROTOCOL_VERSION = 1

# Envelope keys
K_V = 0
K_EVENT = 1
K_ID = 2
K_TS = 3
K_BODY = 4

# Inbound events
EV_LOGIN = "login"
EV_TALK = "talk"
EV_COMMAND = "command"
EV_DISCONNECT = "disconnect"

# Outbound events
EV_LOGIN_FAIL = "loginFail"
EV_COMMAND_FAIL = "commandFail"
EV_ROOM = "room"
EV_UPDATE_ALL = "updateAll"
EV_UPDATE = "update"
EV_LEAVE = "leave"
EV_BAN = "ban"
EV_RESOURCE = "resource"

# Clients never get to inject transport-level events.
CLIENT_EVENTS = frozenset({EV_LOGIN, EV_TALK, EV_COMMAND})

# loginFail reasons
R_NAME_MAL = "nameMal"
R_FULL = "full"
R_NAME_LENGTH = "nameLength"

# commandFail reasons
R_INVALID_FORMAT = "invalidFormat"
R_RUNLEVEL = "runlevel"
R_UNKNOWN = "unknown"

# Character classes (regex class bodies) for sanitize()
CC_IDENT = "A-Za-z0-9_-"
CC_URL = r"A-Za-z0-9_\-.:/"

RUNLEVEL_MAX = 3

PLACEHOLDER_TEXT = "HEY EVERYONE LOOK AT ME I'M TRYING TO SCREW WITH THE SERVER LMAO"

SANITIZE_OFF_TERMS = ("false", "off", "disable", "disabled", "f", "no", "n")

VAPORWAVE_VID = "aQkPcPqTq4M"
POPE_COLOR = "pope"

DEFAULT_PALETTE = ("black", "blue", "brown", "green", "purple", "red")

UNKNOWN_ADDR = "N/A"
