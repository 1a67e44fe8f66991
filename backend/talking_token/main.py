from flask import Blueprint, jsonify, current_app
from talking_token.services.session.token import PASS_METHODS

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Talking Token server!'})

@main.route('/api/config')
def client_config():
    # Expose speaking-time bounds so clients can render the budget slider
    cfg = current_app.config
    return jsonify({
        'default_max_speaking_seconds': int(cfg.get('DEFAULT_MAX_SPEAKING_SEC', 90)),
        'min_speaking_seconds': int(cfg.get('MIN_SPEAKING_SEC', 10)),
        'max_speaking_seconds': int(cfg.get('MAX_SPEAKING_SEC', 180)),
        'pass_methods': list(PASS_METHODS),
    })
