def _create(host_client, quiz_id, **options):
    res = host_client.post('/api/sessions', json={'quiz_id': quiz_id, **options})
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def test_login_and_check(client, demo_quiz_id):
    res = client.post('/login', json={'username': 'host', 'password': 'wrong'})
    assert res.status_code == 401
    res = client.post('/login', json={'username': 'host', 'password': 'password'})
    assert res.status_code == 200
    assert client.get('/check_login').get_json()['user']['username'] == 'host'


def test_list_quizzes(host_client, demo_quiz_id):
    quizzes = host_client.get('/quizzes').get_json()
    assert quizzes == [{'id': demo_quiz_id, 'title': 'Demo Quiz', 'question_count': 3}]


def test_create_session_requires_login(client, demo_quiz_id):
    res = client.post('/api/sessions', json={'quiz_id': demo_quiz_id})
    assert res.status_code == 401


def test_create_session(host_client, demo_quiz_id):
    data = _create(host_client, demo_quiz_id)
    assert data['host_token']
    session = data['session']
    assert session['status'] == 'waiting'
    assert session['question_count'] == 3
    assert session['current_question_index'] == -1


def test_create_session_unknown_quiz(host_client):
    res = host_client.post('/api/sessions', json={'quiz_id': 9999})
    assert res.status_code == 404
    assert res.get_json()['code'] == 'QuizNotFound'


def test_create_session_requires_quiz_id(host_client):
    res = host_client.post('/api/sessions', json={})
    assert res.status_code == 400


def test_session_options_override_config(host_client, demo_quiz_id):
    data = _create(host_client, demo_quiz_id, max_participants=3, allow_late_join=False, countdown_seconds=2)
    options = data['session']['options']
    assert options['max_participants'] == 3
    assert options['allow_late_join'] is False
    assert options['countdown_seconds'] == 2


def test_get_unknown_session(client):
    res = client.get('/api/sessions/nope')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'SessionNotFound'


def test_host_commands_over_http(host_client, client, demo_quiz_id, clock, registry):
    data = _create(host_client, demo_quiz_id)
    sid = data['session_id']
    headers = {'X-Host-Token': data['host_token']}

    # Anonymous callers without the token are refused
    res = client.post(f'/api/sessions/{sid}/start')
    assert res.status_code == 403

    res = client.post(f'/api/sessions/{sid}/start', headers=headers)
    assert res.status_code == 200
    assert res.get_json()['status'] == 'countdown'

    clock.advance(5_000)
    registry.get(sid).tick()
    state = client.get(f'/api/sessions/{sid}').get_json()
    assert state['status'] == 'question_active'
    # Participants never see which answer is correct while the question is open
    assert all('is_correct' not in a for a in state['question']['answers'])

    host_view = client.get(f'/api/sessions/{sid}', headers=headers).get_json()
    assert any(a['is_correct'] for a in host_view['question']['answers'])

    res = client.post(f'/api/sessions/{sid}/show', headers=headers)
    assert res.status_code == 409
    assert res.get_json()['code'] == 'IllegalTransition'

    assert client.post(f'/api/sessions/{sid}/pause', headers=headers).get_json()['status'] == 'paused'
    assert client.post(f'/api/sessions/{sid}/resume', headers=headers).get_json()['status'] == 'question_active'
    assert client.post(f'/api/sessions/{sid}/close', headers=headers).get_json()['status'] == 'question_closed'
    assert client.post(f'/api/sessions/{sid}/end', headers=headers).get_json()['status'] == 'ended'

    res = client.post(f'/api/sessions/{sid}/start', headers=headers)
    assert res.status_code == 409
    assert res.get_json()['code'] == 'SessionEnded'


def test_unknown_action(host_client, demo_quiz_id):
    sid = _create(host_client, demo_quiz_id)['session_id']
    assert host_client.post(f'/api/sessions/{sid}/explode').status_code == 404


def test_logged_in_host_may_control_without_token(host_client, demo_quiz_id):
    sid = _create(host_client, demo_quiz_id)['session_id']
    res = host_client.post(f'/api/sessions/{sid}/start')
    assert res.status_code == 200


def test_list_live_sessions(host_client, demo_quiz_id):
    first = _create(host_client, demo_quiz_id)
    second = _create(host_client, demo_quiz_id)
    host_client.post(f"/api/sessions/{second['session_id']}/end")
    listed = host_client.get('/api/sessions').get_json()
    assert [s['session_id'] for s in listed] == [first['session_id']]


def test_leaderboard_endpoint(host_client, client, demo_quiz_id, registry):
    from quizmaster.services.live.commands import Actor, JoinSession

    data = _create(host_client, demo_quiz_id)
    session = registry.get(data['session_id'])
    for name in ('Ann', 'Ben'):
        session.apply(JoinSession(display_name=name), Actor.participant(''))

    res = client.get(f"/api/sessions/{data['session_id']}/leaderboard?limit=1")
    board = res.get_json()['leaderboard']
    assert len(board) == 1
    assert board[0]['display_name'] == 'Ann'


def test_hidden_leaderboard_is_host_only(host_client, client, demo_quiz_id):
    data = _create(host_client, demo_quiz_id, show_leaderboard=False)
    sid = data['session_id']
    assert client.get(f'/api/sessions/{sid}/leaderboard').status_code == 403
    res = client.get(f'/api/sessions/{sid}/leaderboard', headers={'X-Host-Token': data['host_token']})
    assert res.status_code == 200


def test_stats_are_host_only(host_client, client, demo_quiz_id):
    data = _create(host_client, demo_quiz_id)
    sid = data['session_id']
    assert client.get(f'/api/sessions/{sid}/stats').status_code == 403
    stats = client.get(f'/api/sessions/{sid}/stats', headers={'X-Host-Token': data['host_token']}).get_json()
    assert stats['status'] == 'waiting'
    assert stats['connections']['total_connections'] == 0
    assert len(stats['questions']) == 3


def test_results_archived_when_session_ends(host_client, demo_quiz_id, clock, registry):
    from quizmaster.services.live.commands import Actor, JoinSession, SubmitAnswer

    data = _create(host_client, demo_quiz_id)
    sid = data['session_id']
    session = registry.get(sid)
    player = session.apply(JoinSession(display_name='Ann'), Actor.participant('')).detail

    assert host_client.get(f'/api/sessions/{sid}/results').status_code == 404

    host_client.post(f'/api/sessions/{sid}/start')
    clock.advance(5_000)
    session.tick()
    correct = session.current_question().correct_answer_id
    assert session.apply(SubmitAnswer(0, correct), Actor.participant(player.id)).ok
    host_client.post(f'/api/sessions/{sid}/end')

    res = host_client.get(f'/api/sessions/{sid}/results')
    assert res.status_code == 200
    results = res.get_json()
    assert results['end_reason'] == 'host'
    assert results['participant_count'] == 1
    assert results['leaderboard'][0]['total_score'] == 150
    assert results['answers'][0]['is_correct'] is True
