from talking_token import db
from talking_token.services.session import records
import string
import random
import time

def generate_meeting_code(length=4):
    """Generate a unique, short meeting code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not Meeting.query.filter_by(meeting_code=code).first():
            return code

class Meeting(db.Model):
    __tablename__ = 'meeting'
    id = db.Column(db.Integer, primary_key=True)
    meeting_code = db.Column(db.String(4), unique=True, index=True)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    started_at = db.Column(db.Float, nullable=True)
    # One JSON-encoded record per column, see services.session.records
    participants = db.Column(db.Text, nullable=True)
    topics = db.Column(db.Text, nullable=True)
    token_state = db.Column(db.Text, nullable=True)
    ledger = db.Column(db.Text, nullable=True)
    settings = db.Column(db.Text, nullable=True)
    last_stats = db.Column(db.Text, nullable=True)

    def __init__(self, **kwargs):
        super(Meeting, self).__init__(**kwargs)
        if not self.meeting_code:
            self.meeting_code = generate_meeting_code()

    def stored_records(self):
        return {name: getattr(self, name) for name in records.RECORD_NAMES}

    def store_records(self, values):
        for name in records.RECORD_NAMES:
            value = values.get(name)
            setattr(self, name, records.dump(value) if value is not None else None)

    def to_dict(self):
        return {
            'id': self.id,
            'meeting_code': self.meeting_code,
            'created_at': self.created_at,
            'started_at': self.started_at,
        }
