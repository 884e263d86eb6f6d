from prediction_pool import create_app, db
from prediction_pool.models import Match, PlayerBets, ReconciliationRun, Round, RoundBets, Season

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "Season": Season,
        "Round": Round,
        "Match": Match,
        "PlayerBets": PlayerBets,
        "RoundBets": RoundBets,
        "ReconciliationRun": ReconciliationRun,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
