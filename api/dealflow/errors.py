"""Error taxonomy for deal operations.

Every error carries a stable ``code`` (rendered to clients) and the HTTP
status the router layer should answer with. Groups follow how a caller is
expected to react:

* ``InputError``: malformed or missing fields, nothing was mutated.
* ``StateError``: the user or deal is in the wrong state, nothing was mutated.
* ``ProviderError``: the signing provider failed; local state (such as an
  already created envelope id) is kept so the operation can be retried.
* ``OperationError``: persistence failed; retry the whole operation.
* ``SigningTerminalNotCompleted``: the envelope was declined or voided and
  the document must be restarted from scratch.
"""


class DealflowError(Exception):
    code = "error"
    status_code = 400
    message = "operation failed"

    def __init__(self, message=None, **context):
        super().__init__(message or self.message)
        self.detail = message or self.message
        self.context = context


class InputError(DealflowError):
    code = "bad_argument"
    status_code = 422
    message = "bad argument"


class TokenError(InputError):
    code = "token_error"
    status_code = 404
    message = "unknown token"


class StateError(DealflowError):
    code = "state_error"
    status_code = 409
    message = "operation not allowed in current state"


class DealUnknown(StateError):
    code = "deal_unknown"
    status_code = 404
    message = "deal not found"


class ProgressUnknown(StateError):
    code = "deal_party_unknown"
    status_code = 404
    message = "deal party not found"


class DealNotLive(StateError):
    code = "deal_not_live"
    message = "deal is not open"


class DealNotLiveOrSubmitted(StateError):
    code = "deal_not_live_or_submitted"
    message = "deal is neither open nor user submitted"


class AlreadySelling(StateError):
    code = "deal_already_selling"
    message = "already selling on this deal"


class AlreadyBuying(StateError):
    code = "deal_already_buying"
    message = "already buying on this deal"


class AlreadyOffering(StateError):
    code = "deal_already_offering"
    message = "already offering on this deal"


class AlreadyInitiated(StateError):
    code = "deal_already_initiated"
    message = "deal already initiated, continue the existing track"


class WrongUserState(StateError):
    code = "deal_user_state_error"
    message = "wrong user state for this operation"


class NoSuchOffer(StateError):
    code = "deal_sell_no_such_offer"
    status_code = 404
    message = "offer not found"


class NoBankInfo(StateError):
    code = "deal_no_bank_info"
    status_code = 404
    message = "bank information not found"


class NotEnoughShares(StateError):
    code = "deal_not_enough_shares"
    message = "not enough shares left on this deal"


class CheckInProgress(StateError):
    code = "deal_signing_checking"
    message = "signing status check already in progress"


class NotEligibleToCheck(StateError):
    code = "deal_signing_sign_error"
    message = "signing not started, expired, or checked too recently"


class SigningTerminalNotCompleted(StateError):
    code = "deal_signing_status_error"
    status_code = 410
    message = "document was declined or voided, restart signing"


class ProviderError(DealflowError):
    code = "deal_signing_error"
    status_code = 502
    message = "signing provider error"


class SigningProviderError(ProviderError):
    pass


class EnvelopeError(ProviderError):
    code = "deal_signing_envelope_error"
    message = "could not create signing envelope"


class RecipientError(ProviderError):
    code = "deal_signing_recipient_error"
    message = "could not create signing url for recipient"


class DownloadError(ProviderError):
    code = "deal_signing_download_error"
    message = "could not download signed document"


class OperationError(DealflowError):
    code = "deal_operation_error"
    status_code = 500
    message = "internal operation error"
