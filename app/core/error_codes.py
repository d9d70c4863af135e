class ErrorCode:
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_USER = "INVALID_USER"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    EMAIL_ALREADY_REGISTERED = "EMAIL_ALREADY_REGISTERED"

    CODE_NOT_FOUND = "CODE_NOT_FOUND"
    CODE_EXISTS = "CODE_EXISTS"
    CODE_IN_USE = "CODE_IN_USE"
    CODE_GENERATION_EXHAUSTED = "CODE_GENERATION_EXHAUSTED"
    CREATOR_NOT_FOUND = "CREATOR_NOT_FOUND"
    INVALID_CODE = "INVALID_CODE"
    ALREADY_USED = "ALREADY_USED"

    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
