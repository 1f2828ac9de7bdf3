# Client -> server commands
JOIN_ROOM = "join_room"
LEAVE_ROOM = "leave_room"
SUBMIT_VOTE = "submit_vote"
REVEAL_VOTES = "reveal_votes"
RESET_VOTING = "reset_voting"
CHANGE_ISSUE = "change_issue"
ADD_ISSUE = "add_issue"
REMOVE_ISSUE = "remove_issue"
UPDATE_ROLE = "update_role"
START_TIMER = "start_timer"
STOP_TIMER = "stop_timer"
KICK_PARTICIPANT = "kick_participant"
SET_ESTIMATE = "set_estimate"

COMMANDS = (
    JOIN_ROOM,
    LEAVE_ROOM,
    SUBMIT_VOTE,
    REVEAL_VOTES,
    RESET_VOTING,
    CHANGE_ISSUE,
    ADD_ISSUE,
    REMOVE_ISSUE,
    UPDATE_ROLE,
    START_TIMER,
    STOP_TIMER,
    KICK_PARTICIPANT,
    SET_ESTIMATE,
)

# Server -> client events
ROOM_STATE = "room_state"
USER_JOINED = "user_joined"
USER_LEFT = "user_left"
VOTE_SUBMITTED = "vote_submitted"
VOTES_REVEALED = "votes_revealed"
VOTING_RESET = "voting_reset"
ISSUE_CHANGED = "issue_changed"
ISSUE_ADDED = "issue_added"
ISSUE_REMOVED = "issue_removed"
ISSUE_UPDATED = "issue_updated"
ROLE_UPDATED = "role_updated"
TIMER_STARTED = "timer_started"
TIMER_STOPPED = "timer_stopped"
PARTICIPANT_KICKED = "participant_kicked"
ERROR = "error"
