from issue_scheduler.cli import main

raise SystemExit(main())
